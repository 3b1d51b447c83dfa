from __future__ import annotations

import asyncio
import json
from datetime import timedelta

from soilwatch.models.enums import ViolationDirectionEnum
from soilwatch.schemas.alerts import AlertStatus
from soilwatch.services.alert_service import AlertPipeline
from tests.conftest import (
    BASE_TIME,
    FakeClock,
    FakeRedis,
    FakeSmsGateway,
    InMemoryAlertStore,
    InMemoryPlantDirectory,
    InMemoryReadingStore,
    InMemoryRecipientDirectory,
    InMemoryStageCatalog,
    make_reading,
)

ELIGIBLE_MOBILES = {"09170000001", "09170000002"}


async def test_low_nitrogen_dispatches_one_below_violation(
    pipeline: AlertPipeline,
    gateway: FakeSmsGateway,
    alert_store: InMemoryAlertStore,
) -> None:
    outcome = await pipeline.ingest(make_reading({"nitrogen": 5}))

    assert outcome.status == AlertStatus.dispatched
    assert [(v.parameter, v.direction, v.bound) for v in outcome.violations] == [
        ("nitrogen", ViolationDirectionEnum.BELOW, 10),
    ]
    assert {address for address, _ in gateway.sent} == ELIGIBLE_MOBILES
    assert "1. nitrogen: 5ppm (below 10ppm)" in gateway.sent[0][1]
    assert len(alert_store.records) == 1
    assert outcome.record_persisted is True


async def test_in_range_parameter_is_not_reported(pipeline: AlertPipeline) -> None:
    outcome = await pipeline.ingest(make_reading({"nitrogen": 18, "phosphorus": 30}))

    assert outcome.status == AlertStatus.dispatched
    assert [(v.parameter, v.direction, v.bound) for v in outcome.violations] == [
        ("phosphorus", ViolationDirectionEnum.ABOVE, 25),
    ]


async def test_repeat_inside_window_is_suppressed(
    pipeline: AlertPipeline,
    gateway: FakeSmsGateway,
    alert_store: InMemoryAlertStore,
    clock: FakeClock,
) -> None:
    first = await pipeline.ingest(make_reading({"nitrogen": 5}))
    clock.advance(minutes=10)
    second = await pipeline.ingest(make_reading({"nitrogen": 4}, timestamp=BASE_TIME + timedelta(minutes=10)))

    assert first.status == AlertStatus.dispatched
    assert second.status == AlertStatus.suppressed
    assert second.identity == first.identity
    assert len(gateway.sent) == len(ELIGIBLE_MOBILES)
    assert len(alert_store.records) == 1


async def test_repeat_after_window_dispatches_again(
    pipeline: AlertPipeline,
    gateway: FakeSmsGateway,
    alert_store: InMemoryAlertStore,
    clock: FakeClock,
) -> None:
    await pipeline.ingest(make_reading({"nitrogen": 5}))
    clock.advance(minutes=61)
    again = await pipeline.ingest(make_reading({"nitrogen": 5}, timestamp=BASE_TIME + timedelta(minutes=61)))

    assert again.status == AlertStatus.dispatched
    assert len(gateway.sent) == 2 * len(ELIGIBLE_MOBILES)
    assert len(alert_store.records) == 2


async def test_unbound_sensor_is_skipped_without_side_effects(
    pipeline: AlertPipeline,
    catalog: InMemoryStageCatalog,
    gateway: FakeSmsGateway,
    alert_store: InMemoryAlertStore,
    reading_store: InMemoryReadingStore,
) -> None:
    outcome = await pipeline.ingest(make_reading({"nitrogen": 5}, sensor_id="orphan"))

    assert outcome.status == AlertStatus.skipped_no_plant
    assert catalog.calls == 0
    assert gateway.sent == []
    assert alert_store.records == {}
    assert len(reading_store.readings) == 1


async def test_partial_send_failure_still_writes_record(
    pipeline: AlertPipeline,
    gateway: FakeSmsGateway,
    alert_store: InMemoryAlertStore,
) -> None:
    gateway.failing.add("09170000002")

    outcome = await pipeline.ingest(make_reading({"nitrogen": 5}))

    assert outcome.report is not None
    assert outcome.report.sent_count == 1
    assert outcome.report.failed_count == 1
    [record] = alert_store.records.values()
    assert {(item.mobile, item.success) for item in record.recipients} == {
        ("09170000001", True),
        ("09170000002", False),
    }


async def test_within_range_reading_sends_nothing(pipeline: AlertPipeline, gateway: FakeSmsGateway) -> None:
    outcome = await pipeline.ingest(make_reading({"nitrogen": 10, "phosphorus": 25, "ph": 6.0}))

    assert outcome.status == AlertStatus.within_range
    assert gateway.sent == []


async def test_unknown_stage_skips_for_missing_thresholds(
    pipeline: AlertPipeline,
    plants: InMemoryPlantDirectory,
    gateway: FakeSmsGateway,
) -> None:
    plant = plants.plants["sensor-1"]
    plants.plants["sensor-1"] = plant.model_copy(update={"status": "Dormant"})

    outcome = await pipeline.ingest(make_reading({"nitrogen": 5}))

    assert outcome.status == AlertStatus.skipped_no_thresholds
    assert gateway.sent == []


async def test_catalog_failure_aborts_reading(
    pipeline: AlertPipeline,
    catalog: InMemoryStageCatalog,
    gateway: FakeSmsGateway,
) -> None:
    catalog.fail = True

    outcome = await pipeline.ingest(make_reading({"nitrogen": 5}))

    assert outcome.status == AlertStatus.context_unavailable
    assert gateway.sent == []


async def test_dedup_store_failure_fails_open(
    pipeline: AlertPipeline,
    alert_store: InMemoryAlertStore,
    gateway: FakeSmsGateway,
) -> None:
    alert_store.fail_lookup = True

    outcome = await pipeline.ingest(make_reading({"nitrogen": 5}))

    assert outcome.status == AlertStatus.dispatched
    assert len(gateway.sent) == len(ELIGIBLE_MOBILES)


async def test_record_write_failure_still_prevents_immediate_realert(
    pipeline: AlertPipeline,
    alert_store: InMemoryAlertStore,
    gateway: FakeSmsGateway,
    clock: FakeClock,
) -> None:
    alert_store.fail_save = True
    first = await pipeline.ingest(make_reading({"nitrogen": 5}))
    assert first.status == AlertStatus.dispatched
    assert first.record_persisted is False

    alert_store.fail_lookup = True
    clock.advance(minutes=2)
    second = await pipeline.ingest(make_reading({"nitrogen": 5}, timestamp=BASE_TIME + timedelta(minutes=2)))

    assert second.status == AlertStatus.suppressed
    assert len(gateway.sent) == len(ELIGIBLE_MOBILES)


async def test_no_eligible_recipients_writes_no_record(
    pipeline: AlertPipeline,
    recipients: InMemoryRecipientDirectory,
    alert_store: InMemoryAlertStore,
) -> None:
    recipients.recipients = []

    outcome = await pipeline.ingest(make_reading({"nitrogen": 5}))

    assert outcome.status == AlertStatus.no_recipients
    assert outcome.message is not None
    assert alert_store.records == {}


async def test_dispatch_publishes_live_event(pipeline: AlertPipeline, fake_redis: FakeRedis) -> None:
    await pipeline.ingest(make_reading({"nitrogen": 5}))

    fake_redis.publish.assert_awaited_once()
    channel, raw = fake_redis.publish.await_args.args
    event = json.loads(raw)
    assert channel == "alerts:live"
    assert event["event_type"] == "alert_dispatched"
    assert event["sent_count"] == 2
    assert event["violations"][0]["direction"] == "BELOW"


async def test_check_latest_reuses_stored_reading(
    pipeline: AlertPipeline,
    reading_store: InMemoryReadingStore,
) -> None:
    assert await pipeline.check_latest("sensor-1") is None

    await reading_store.save_reading(make_reading({"nitrogen": 50}))
    outcome = await pipeline.check_latest("sensor-1")

    assert outcome is not None
    assert outcome.status == AlertStatus.dispatched
    assert outcome.violations[0].direction == ViolationDirectionEnum.ABOVE


async def test_concurrent_duplicates_for_one_sensor_send_once(
    pipeline: AlertPipeline,
    gateway: FakeSmsGateway,
) -> None:
    outcomes = await asyncio.gather(
        *(pipeline.ingest(make_reading({"nitrogen": 5})) for _ in range(3))
    )

    statuses = sorted(outcome.status for outcome in outcomes)
    assert statuses.count(AlertStatus.dispatched) == 1
    assert statuses.count(AlertStatus.suppressed) == 2
    assert len(gateway.sent) == len(ELIGIBLE_MOBILES)


async def test_cleanup_old_alerts_uses_retention_cutoff(
    pipeline: AlertPipeline,
    alert_store: InMemoryAlertStore,
    clock: FakeClock,
) -> None:
    await pipeline.ingest(make_reading({"nitrogen": 5}))
    clock.advance(days=31)

    deleted, cutoff = await pipeline.cleanup_old_alerts(30)

    assert deleted == 1
    assert cutoff == BASE_TIME + timedelta(days=1)
    assert alert_store.records == {}


async def test_check_latest_reports_reading_store_failure_as_outcome(
    pipeline: AlertPipeline,
    reading_store: InMemoryReadingStore,
    gateway: FakeSmsGateway,
) -> None:
    reading_store.fail_lookup = True

    outcome = await pipeline.check_latest("sensor-1")

    assert outcome is not None
    assert outcome.status == AlertStatus.context_unavailable
    assert outcome.message == "reading store offline"
    assert gateway.sent == []


async def test_recheck_of_old_reading_shows_reading_time(
    pipeline: AlertPipeline,
    reading_store: InMemoryReadingStore,
    gateway: FakeSmsGateway,
    clock: FakeClock,
) -> None:
    await reading_store.save_reading(make_reading({"nitrogen": 5}))
    clock.advance(hours=3)

    outcome = await pipeline.check_latest("sensor-1")

    assert outcome is not None
    assert outcome.status == AlertStatus.dispatched
    assert "Time: 2026-05-04 08:00 UTC" in gateway.sent[0][1]


async def test_sensor_locks_are_released_after_processing(pipeline: AlertPipeline) -> None:
    await asyncio.gather(
        pipeline.ingest(make_reading({"nitrogen": 5})),
        pipeline.ingest(make_reading({"nitrogen": 5})),
        *(pipeline.ingest(make_reading({"ph": 6}, sensor_id=f"stray-{index}")) for index in range(20)),
    )

    assert pipeline._sensor_slots == {}
