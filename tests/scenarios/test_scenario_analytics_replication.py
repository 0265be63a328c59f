"""
Scenario 2: a subscriber organization receives a full, ordered copy of analytics

Covers:
- subscribe + configure webhook -> resync emits snapshots -> dispatcher delivers them
- live writes arriving after the backfill, in seq order
- a subscriber outage: nothing is lost, the failed batch is sent again
- unsubscribed types never reach the subscriber
"""
import pytest

from app.domain.services.analytics_service import AnalyticsService
from app.domain.services.webhook_dispatcher import verify_signature

from tests.scenarios.conftest import drain_resync, drain_webhooks, make_webhooks_due

SECRET = "replication-secret-0042"


@pytest.mark.scenario
class TestAnalyticsReplication:

    async def _setup(self, test_client, sample_organization, analytics_type_factory) -> dict:
        cost_center = await analytics_type_factory("COST_CENTER", "Cost centers")
        await analytics_type_factory("PROJECT", "Projects")

        response = await test_client.put(
            f"/api/analytics/orgs/{sample_organization.id}/subscriptions/{cost_center.id}",
            json={"enabled": True},
        )
        assert response.status_code == 200
        response = await test_client.put(
            f"/api/analytics/orgs/{sample_organization.id}/webhook",
            json={"url": "https://subscriber.test/analytics", "secret": SECRET},
        )
        assert response.status_code == 200
        return {"cost_center": cost_center}

    async def test_backfill_then_live_updates(
        self,
        db_session,
        sample_organization,
        analytics_type_factory,
        resync_processor,
        webhook_dispatcher,
        subscriber,
    ) -> None:
        service = AnalyticsService(db_session)
        await analytics_type_factory("COST_CENTER", "Cost centers")
        for n in range(12):
            await service.upsert_value("COST_CENTER", f"CC-{n:02d}", f"Cost center {n}")

        cost_center = await service.get_type_by_code("COST_CENTER")
        await service.set_subscription(sample_organization.id, cost_center.id, True)
        await service.upsert_webhook(
            sample_organization.id, "https://subscriber.test/analytics", SECRET
        )

        await drain_resync(resync_processor)
        await drain_webhooks(webhook_dispatcher, db_session)

        events = subscriber.delivered_events()
        upserts = [e for e in events if e["eventType"] == "Upsert"]
        snapshots = [e for e in events if e["eventType"] == "Snapshot"]
        assert len(upserts) == 12
        assert sorted(e["payload"]["value"]["code"] for e in snapshots) == [
            f"CC-{n:02d}" for n in range(12)
        ]
        seqs = [e["seq"] for e in events]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == len(seqs)

        # live change after the backfill
        await service.upsert_value("COST_CENTER", "CC-03", "Cost center 3", is_active=False)
        await make_webhooks_due(db_session)
        await drain_webhooks(webhook_dispatcher, db_session)

        last = subscriber.delivered_events()[-1]
        assert last["eventType"] == "Deactivate"
        assert last["payload"]["value"]["code"] == "CC-03"

        for request in subscriber.requests:
            assert verify_signature(request.content, SECRET, request.headers["x-ecof-signature"])

    async def test_outage_loses_nothing(
        self,
        test_client,
        db_session,
        sample_organization,
        analytics_type_factory,
        webhook_dispatcher,
        subscriber,
    ) -> None:
        await self._setup(test_client, sample_organization, analytics_type_factory)
        service = AnalyticsService(db_session)

        subscriber.down = True
        for n in range(3):
            await service.upsert_value("COST_CENTER", f"CC-{n}", f"Cost center {n}")
        for _ in range(2):
            assert (await webhook_dispatcher.run_once())["failed"] == 1
            await make_webhooks_due(db_session)

        assert subscriber.delivered_events() == []

        subscriber.down = False
        await service.upsert_value("COST_CENTER", "CC-9", "Late one")
        await drain_webhooks(webhook_dispatcher, db_session)

        codes = [e["payload"]["value"]["code"] for e in subscriber.delivered_events()]
        assert codes == ["CC-0", "CC-1", "CC-2", "CC-9"]
        # both failed attempts carried the same batch
        assert subscriber.requests[0].content == subscriber.requests[1].content

    async def test_unsubscribed_types_are_never_sent(
        self,
        test_client,
        db_session,
        sample_organization,
        analytics_type_factory,
        resync_processor,
        webhook_dispatcher,
        subscriber,
    ) -> None:
        await self._setup(test_client, sample_organization, analytics_type_factory)
        service = AnalyticsService(db_session)

        await service.upsert_value("PROJECT", "P-1", "Secret project")
        await service.upsert_value("COST_CENTER", "CC-1", "Head office")

        await drain_resync(resync_processor)
        await drain_webhooks(webhook_dispatcher, db_session)

        events = subscriber.delivered_events()
        assert events
        assert {e["typeCode"] for e in events} == {"COST_CENTER"}
