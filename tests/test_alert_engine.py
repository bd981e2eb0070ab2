import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import BM, TENANT, RecordingDispatcher, StaticPolicyProvider
from supportdesk.alerting.application import (
    AlertRuleCreateDTO,
    AlertRuleEngine,
    AlertRuleUpdateDTO,
    IMetricsProvider,
    IScopeProvider,
)
from supportdesk.alerting.domain import (
    ActiveAlert,
    AgentPerformance,
    AlertingPolicy,
    AlertRuleDefinition,
    LiveMetrics,
    MetricKey,
    MetricsSnapshot,
    OverviewMetrics,
    SLAMetricsSummary,
    dedup_key,
)
from supportdesk.alerting.infrastructure import (
    SQLAlchemyAlertHistoryRepository,
    SQLAlchemyAlertRuleRepository,
)
from supportdesk.config import AlertSeverity, AlertType, BusinessModel, NotificationPriority
from supportdesk.core import (
    AlertAlreadyResolvedException,
    AlertNotFoundException,
    AlertRuleNotFoundException,
)


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeMetricsProvider(IMetricsProvider):
    """Returns fixed metrics; can fail or stall per scope or window."""

    def __init__(self):
        self.overview_metrics = OverviewMetrics()
        self.sla_summary = SLAMetricsSummary(first_response_compliance=100.0, resolution_compliance=100.0)
        self.agents = []
        self.live = LiveMetrics()
        self.failing_windows = set()
        self.slow_tenants = set()
        self.overview_calls = []

    async def overview(self, business_model, tenant_id, start, end):
        window = int((end - start).total_seconds() // 60)
        self.overview_calls.append((business_model, tenant_id, window))
        if tenant_id in self.slow_tenants:
            await asyncio.sleep(5)
        if window in self.failing_windows:
            raise RuntimeError("metrics backend unavailable")
        return self.overview_metrics

    async def sla_metrics(self, business_model, tenant_id, start, end):
        return self.sla_summary

    async def agent_performance(self, business_model, tenant_id, start, end):
        return list(self.agents)

    async def current_live_metrics(self, business_model, tenant_id, now):
        return self.live


class FixedScopes(IScopeProvider):
    def __init__(self, scopes):
        self.scopes = scopes

    async def list_scopes(self):
        return list(self.scopes)


def sla_rule(threshold=90, **overrides):
    values = {
        "name": "SLA Compliance Drop",
        "type": AlertType.SLA_BREACH,
        "conditions": [{
            "metric": "sla.firstResponseSLA.compliance",
            "operator": "<",
            "threshold": threshold,
            "time_window": 60,
        }],
        "actions": {"email": ["admin@company.com"], "webhook": "https://hooks.example.com/alerts"},
        "business_model": BM,
    }
    values.update(overrides)
    return AlertRuleCreateDTO(**values)


@pytest.fixture
def metrics():
    return FakeMetricsProvider()


@pytest.fixture
def engine(metrics, dispatcher):
    return AlertRuleEngine(
        metrics_provider=metrics,
        scope_provider=FixedScopes([(BM, TENANT)]),
        dispatcher=dispatcher,
        scope_timeout=0.2,
    )


def alerts_on_admin(dispatcher):
    return [n for n in dispatcher.on_channel("admin") if n.type == "SUPPORT_ALERT"]


# ========== Triggering ==========

async def test_rule_triggers_and_notifies(engine, metrics, dispatcher):
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 65.0

    report = await engine.run_cycle(NOW)

    assert report.scopes == 1
    assert report.triggered == 1
    active = engine.get_active_alerts()
    assert len(active) == 1
    alert = active[0]
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.message == "SLA Compliance Drop: Current value 65.00 < threshold 90"
    assert alert.action_required is True
    assert len(alert.suggestions) == 4
    assert alert.metadata["observed"][0]["value"] == 65.0

    [broadcast] = alerts_on_admin(dispatcher)
    assert broadcast.priority == NotificationPriority.URGENT
    assert broadcast.data["category"] == "ADMIN"
    assert broadcast.data["alert"]["id"] == alert.id

    [(address, subject, body)] = dispatcher.emails
    assert address == "admin@company.com"
    assert subject == "Support Alert: SLA Compliance Drop"
    assert "#dc3545" in body

    [(url, payload)] = dispatcher.webhooks
    assert url == "https://hooks.example.com/alerts"
    assert payload["attachments"][0]["footer"] == "Support Analytics System"


async def test_warning_severity_above_cutoff(engine, metrics):
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 80.0

    await engine.run_cycle(NOW)

    assert engine.get_active_alerts()[0].severity == AlertSeverity.WARNING


async def test_custom_rules_are_informational(engine, metrics):
    await engine.create_alert_rule(AlertRuleCreateDTO(
        name="Too many tickets",
        type=AlertType.CUSTOM,
        conditions=[{"metric": "tickets.total", "operator": ">=", "threshold": 1}],
        business_model=BM,
    ))
    metrics.overview_metrics.total_tickets = 3

    await engine.run_cycle(NOW)

    [alert] = engine.get_active_alerts()
    assert alert.severity == AlertSeverity.INFO
    assert alert.action_required is False


async def test_duplicate_trigger_refreshes_timestamp(engine, metrics, dispatcher):
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 50.0

    await engine.run_cycle(NOW)
    first = engine.get_active_alerts()[0]

    later = NOW + timedelta(minutes=5)
    report = await engine.run_cycle(later)

    active = engine.get_active_alerts()
    assert len(active) == 1
    assert active[0].id == first.id
    assert active[0].triggered_at == later
    assert report.triggered == 0
    assert report.refreshed == 1
    assert len(alerts_on_admin(dispatcher)) == 1


async def test_all_conditions_must_pass(engine, metrics):
    await engine.create_alert_rule(sla_rule(conditions=[
        {"metric": "sla.firstResponseSLA.compliance", "operator": "<", "threshold": 90},
        {"metric": "tickets.total", "operator": ">", "threshold": 10},
    ]))
    metrics.sla_summary.first_response_compliance = 50.0
    metrics.overview_metrics.total_tickets = 5

    await engine.run_cycle(NOW)
    assert engine.get_active_alerts() == []

    metrics.overview_metrics.total_tickets = 11
    await engine.run_cycle(NOW)
    assert len(engine.get_active_alerts()) == 1


async def test_rules_only_apply_to_their_scope(engine, metrics):
    await engine.create_alert_rule(sla_rule(business_model=BusinessModel.SAAS_MULTITENANT))
    await engine.create_alert_rule(sla_rule(name="Other tenant", tenant_id="globex"))
    await engine.create_alert_rule(sla_rule(enabled=False, name="Disabled"))
    metrics.sla_summary.first_response_compliance = 10.0

    report = await engine.run_cycle(NOW)

    assert report.rules_evaluated == 0
    assert engine.get_active_alerts() == []


async def test_snapshot_is_shared_between_rules_with_same_window(engine, metrics):
    await engine.create_alert_rule(sla_rule())
    await engine.create_alert_rule(sla_rule(name="Second", type=AlertType.RESPONSE_TIME))

    await engine.run_cycle(NOW)

    assert metrics.overview_calls == [(BM, TENANT, 60)]


async def test_dashboard_receives_metrics_update(engine, metrics, dispatcher):
    metrics.live.pending_tickets = 7

    await engine.run_cycle(NOW)

    [update] = dispatcher.on_channel("dashboard")
    assert update.type == "metrics_update"
    assert update.data["metrics"]["tickets.pending"] == 7
    assert update.data["tenant_id"] == TENANT


# ========== Isolation ==========

async def test_failing_rule_does_not_stop_others(engine, metrics):
    metrics.failing_windows.add(30)
    broken = sla_rule(name="Broken")
    broken.conditions[0] = broken.conditions[0].model_copy(update={"time_window": 30})
    await engine.create_alert_rule(broken)
    await engine.create_alert_rule(sla_rule(name="Healthy", type=AlertType.RESPONSE_TIME))
    metrics.sla_summary.first_response_compliance = 50.0

    report = await engine.run_cycle(NOW)

    assert report.failed_rules == 1
    assert report.triggered == 1
    assert [a.title for a in engine.get_active_alerts()] == ["Healthy"]


async def test_slow_scope_times_out_without_blocking_others(metrics, dispatcher):
    engine = AlertRuleEngine(
        metrics_provider=metrics,
        scope_provider=FixedScopes([(BM, "slow"), (BM, TENANT)]),
        dispatcher=dispatcher,
        scope_timeout=0.05,
    )
    metrics.slow_tenants.add("slow")
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 50.0

    report = await engine.run_cycle(NOW)

    assert report.scopes == 2
    assert report.failed_scopes == 1
    [alert] = engine.get_active_alerts()
    assert alert.tenant_id == TENANT


async def test_slow_delivery_does_not_time_out_evaluation(metrics):
    class SlowMail(RecordingDispatcher):
        async def send_email(self, address, subject, body):
            await asyncio.sleep(0.3)
            return await super().send_email(address, subject, body)

    slow = SlowMail()
    engine = AlertRuleEngine(
        metrics_provider=metrics,
        scope_provider=FixedScopes([(BM, TENANT)]),
        dispatcher=slow,
        scope_timeout=0.2,
    )
    await engine.create_alert_rule(sla_rule())
    await engine.create_alert_rule(sla_rule(
        name="Unhappy customers",
        type=AlertType.SATISFACTION_DROP,
        conditions=[{"metric": "satisfaction.average", "operator": "<", "threshold": 3, "time_window": 60}],
    ))
    metrics.sla_summary.first_response_compliance = 65.0
    metrics.overview_metrics.satisfaction_rating = 2.1

    report = await engine.run_cycle(NOW)

    assert report.failed_scopes == 0
    assert report.triggered == 2
    assert len(engine.get_active_alerts()) == 2
    assert [n.type for n in slow.on_channel("dashboard")] == ["metrics_update"]
    assert len(slow.emails) == 2
    assert len(alerts_on_admin(slow)) == 2


async def test_scope_listing_failure_is_survivable(metrics, dispatcher):
    class BrokenScopes(IScopeProvider):
        async def list_scopes(self):
            raise RuntimeError("database down")

    engine = AlertRuleEngine(metrics, BrokenScopes(), dispatcher)
    report = await engine.run_cycle(NOW)
    assert report.scopes == 0


# ========== Resolution ==========

async def test_resolve_alert(engine, metrics, dispatcher):
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 50.0
    await engine.run_cycle(NOW)
    alert = engine.get_active_alerts()[0]

    resolved = await engine.resolve_alert(alert.id, "admin-1", note="Staffed up")

    assert resolved.resolved_at is not None
    assert resolved.metadata["resolved_by"] == "admin-1"
    assert resolved.metadata["resolution_note"] == "Staffed up"
    assert engine.get_active_alerts() == []
    notice = [n for n in dispatcher.on_channel("admin") if n.type == "SYSTEM_NOTIFICATION"]
    assert notice[0].id == f"resolved-{alert.id}"
    assert notice[0].priority == NotificationPriority.LOW

    with pytest.raises(AlertAlreadyResolvedException):
        await engine.resolve_alert(alert.id, "admin-1")


async def test_resolve_unknown_alert(engine):
    with pytest.raises(AlertNotFoundException):
        await engine.resolve_alert("missing", "admin-1")


async def test_new_alert_after_resolution(engine, metrics):
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 50.0
    await engine.run_cycle(NOW)
    first = engine.get_active_alerts()[0]
    await engine.resolve_alert(first.id, "admin-1")

    report = await engine.run_cycle(NOW + timedelta(minutes=5))

    assert report.triggered == 1
    [second] = engine.get_active_alerts()
    assert second.id != first.id


async def test_cleanup_drops_old_resolved_alerts(engine, metrics):
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 50.0
    await engine.run_cycle(NOW)
    alert = engine.get_active_alerts()[0]
    await engine.resolve_alert(alert.id, "admin-1")

    assert await engine.cleanup_resolved_alerts(datetime.now(timezone.utc)) == 0
    removed = await engine.cleanup_resolved_alerts(datetime.now(timezone.utc) + timedelta(minutes=61))
    assert removed == 1
    with pytest.raises(AlertNotFoundException):
        await engine.resolve_alert(alert.id, "admin-1")


# ========== Rules ==========

async def test_rule_crud(engine):
    rule = await engine.create_alert_rule(sla_rule())
    assert engine.get_alert_rule(rule.id) is rule

    updated = await engine.update_alert_rule(rule.id, AlertRuleUpdateDTO(enabled=False, tenant_id=TENANT))
    assert updated.enabled is False
    assert updated.tenant_id == TENANT

    await engine.delete_alert_rule(rule.id)
    assert engine.get_alert_rules() == []

    with pytest.raises(AlertRuleNotFoundException):
        engine.get_alert_rule(rule.id)
    with pytest.raises(AlertRuleNotFoundException):
        await engine.update_alert_rule(rule.id, AlertRuleUpdateDTO(enabled=True))
    with pytest.raises(AlertRuleNotFoundException):
        await engine.delete_alert_rule(rule.id)


async def test_email_skipped_when_disabled(metrics):
    dispatcher = RecordingDispatcher(email_enabled=False)
    engine = AlertRuleEngine(metrics, FixedScopes([(BM, TENANT)]), dispatcher)
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 50.0

    await engine.run_cycle(NOW)

    assert dispatcher.emails == []
    assert len(alerts_on_admin(dispatcher)) == 1


async def test_severity_cutoffs_come_from_policy(metrics, dispatcher):
    policy = AlertingPolicy(severity_cutoffs={
        AlertType.SLA_BREACH: {"operator": "<", "threshold": 40},
    })
    engine = AlertRuleEngine(
        metrics, FixedScopes([(BM, TENANT)]), dispatcher,
        policy_provider=StaticPolicyProvider(alerting=policy),
    )
    await engine.create_alert_rule(sla_rule())
    metrics.sla_summary.first_response_compliance = 50.0

    await engine.run_cycle(NOW)

    assert engine.get_active_alerts()[0].severity == AlertSeverity.WARNING


async def test_default_rules_seeded_from_policy(metrics, dispatcher):
    policy = AlertingPolicy(default_rules=[
        AlertRuleDefinition(**sla_rule().model_dump()),
        AlertRuleDefinition(**sla_rule(name="Volume", type=AlertType.VOLUME_SPIKE).model_dump()),
    ])
    engine = AlertRuleEngine(
        metrics, FixedScopes([]), dispatcher,
        policy_provider=StaticPolicyProvider(alerting=policy),
    )

    assert await engine.load_rules() == 2
    assert sorted(r.id for r in engine.get_alert_rules()) == ["default-rule-0", "default-rule-1"]


# ========== Persistence ==========

async def test_rules_and_history_survive_restart(session_factory, metrics, dispatcher):
    policy = AlertingPolicy(default_rules=[AlertRuleDefinition(**sla_rule().model_dump())])

    def build():
        return AlertRuleEngine(
            metrics,
            FixedScopes([(BM, TENANT)]),
            dispatcher,
            rule_repository=SQLAlchemyAlertRuleRepository(session_factory),
            history_repository=SQLAlchemyAlertHistoryRepository(session_factory),
            policy_provider=StaticPolicyProvider(alerting=policy),
        )

    engine = build()
    await engine.load_rules()
    custom = await engine.create_alert_rule(sla_rule(name="Custom", type=AlertType.RESPONSE_TIME))
    metrics.sla_summary.first_response_compliance = 50.0
    await engine.run_cycle(NOW)
    alert = [a for a in engine.get_active_alerts() if a.title == "Custom"][0]
    await engine.resolve_alert(alert.id, "admin-1")

    restarted = build()
    assert await restarted.load_rules() == 2
    assert restarted.get_alert_rule(custom.id).name == "Custom"

    history = await restarted.get_alert_history(limit=10)
    assert len(history) == 2
    by_id = {a.id: a for a in history}
    assert by_id[alert.id].resolved_at is not None
    assert by_id[alert.id].metadata["resolved_by"] == "admin-1"


# ========== Snapshot extraction ==========

def test_snapshot_values():
    snapshot = MetricsSnapshot(
        overview=OverviewMetrics(total_tickets=12, satisfaction_rating=4.5),
        sla=SLAMetricsSummary(first_response_breaches=2, resolution_breaches=3),
        agents=[
            AgentPerformance(agent_id="a", workload_score=40, satisfaction_rating=4.0),
            AgentPerformance(agent_id="b", workload_score=80, satisfaction_rating=5.0),
        ],
        live=LiveMetrics(online_agents=2, avg_wait_time=12.5),
    )

    assert snapshot.value(MetricKey.TICKETS_TOTAL) == 12
    assert snapshot.value(MetricKey.SLA_BREACHES_TOTAL) == 5
    assert snapshot.value(MetricKey.AGENTS_WORKLOAD_AVERAGE) == 60
    assert snapshot.value(MetricKey.AGENTS_SATISFACTION_AVERAGE) == 4.5
    assert snapshot.value(MetricKey.AGENTS_ONLINE) == 2
    assert set(snapshot.flatten()) == {key.value for key in MetricKey}


def test_empty_agent_list_averages_to_zero():
    assert MetricsSnapshot().value(MetricKey.AGENTS_WORKLOAD_AVERAGE) == 0.0


# ========== Deduplication ==========

def test_dedup_key_ignores_enum_or_string_form():
    alert = ActiveAlert(
        id="a-1",
        type="sla_breach",
        severity=AlertSeverity.WARNING,
        title="SLA",
        message="m",
        business_model=BM.value,
        tenant_id=TENANT,
    )

    assert alert.dedup_key == dedup_key(AlertType.SLA_BREACH, BM, TENANT)
    assert alert.dedup_key != dedup_key(AlertType.SLA_BREACH, BM, None)

    alert.refresh(NOW, observed=[{"metric": "sla.firstResponseSLA.compliance", "value": 40.0}])
    assert alert.triggered_at == NOW
    assert alert.metadata["observed"][0]["value"] == 40.0


async def test_rules_of_same_type_share_one_alert_per_scope(engine, metrics, dispatcher):
    await engine.create_alert_rule(sla_rule())
    await engine.create_alert_rule(sla_rule(name="Tenant SLA", tenant_id=TENANT))
    metrics.sla_summary.first_response_compliance = 50.0

    report = await engine.run_cycle(NOW)

    assert report.triggered == 1
    assert report.refreshed == 1
    assert len(engine.get_active_alerts()) == 1
    assert len(alerts_on_admin(dispatcher)) == 1
