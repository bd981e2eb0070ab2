"""
Infrastructure
==============

Technical building blocks shared by every bounded context.
"""
