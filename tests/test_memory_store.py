"""InMemoryStore honours the same constraints as the database."""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import make_slot, template_row
from src.planning.errors import ConstraintConflict, InvalidTemplateError, NotFound
from src.planning.models import (
    DayOfWeek,
    Frequency,
    ManualInstance,
    RcpDefinition,
    RcpException,
)
from src.planning.store.memory import InMemoryStore


class TestTemplates:
    def test_seeding_enforces_natural_key(self, store):
        store.add_template_row(template_row("t1"))
        with pytest.raises(ConstraintConflict):
            store.add_template_row(template_row("t2"))

    async def test_batch_with_repeated_key_writes_nothing(self, store):
        with pytest.raises(ConstraintConflict):
            await store.upsert_template_slots([make_slot(None), make_slot(None)])
        assert store.templates == {}

    async def test_update_into_existing_key_conflicts(self, store):
        store.add_template_row(template_row("t1"))
        store.add_template_row(template_row("t2", day="TUESDAY"))
        with pytest.raises(ConstraintConflict):
            await store.update_template_slot("t2", make_slot("t2", day=DayOfWeek.MONDAY))

    async def test_update_missing_row(self, store):
        with pytest.raises(NotFound):
            await store.update_template_slot("nope", make_slot("nope"))

    async def test_delete_missing_rows_is_not_an_error(self, store):
        await store.delete_template_slots(["nope"])
        await store.delete_template_slot("nope")


class TestExceptions:
    async def test_upsert_replaces_row_with_same_key(self):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        ticks = iter([now, now + timedelta(hours=1)])
        store = InMemoryStore(clock=lambda: next(ticks))

        first = await store.upsert_exception(
            RcpException(template_id="t1", original_date=date(2025, 6, 2), is_cancelled=True)
        )
        second = await store.upsert_exception(
            RcpException(template_id="t1", original_date=date(2025, 6, 2), new_date=date(2025, 6, 3))
        )

        assert len(await store.list_exceptions()) == 1
        assert second.id == first.id
        assert second.created_at == first.created_at
        assert not second.is_cancelled
        assert second.new_date == date(2025, 6, 3)

    async def test_delete_exception(self, store):
        await store.upsert_exception(RcpException(template_id="t1", original_date=date(2025, 6, 2)))
        await store.delete_exception("t1", date(2025, 6, 2))
        assert await store.list_exceptions() == []


class TestRcpDefinitions:
    async def test_update_keeps_saved_instance_ids(self, store):
        created = await store.create_rcp_definition(
            RcpDefinition(
                id="",
                name="RCP Sein",
                frequency=Frequency.MANUAL,
                manual_instances=[
                    ManualInstance(date=date(2025, 6, 10)),
                    ManualInstance(date=date(2025, 6, 24)),
                ],
            )
        )
        kept, removed = created.manual_instances
        assert kept.id and removed.id

        updated = await store.update_rcp_definition(
            created.model_copy(
                update={"manual_instances": [kept, ManualInstance(date=date(2025, 7, 8))]}
            )
        )

        ids = {instance.id for instance in updated.manual_instances}
        assert kept.id in ids
        assert removed.id not in ids
        assert len(ids) == 2

    async def test_same_date_instances_are_rejected(self, store, rcp1):
        second = ManualInstance(date=date(2025, 6, 10), time="09:00")
        with pytest.raises(InvalidTemplateError):
            await store.create_rcp_definition(
                rcp1.model_copy(update={"manual_instances": [*rcp1.manual_instances, second]})
            )
        assert store.rcp_definitions == {}

        created = await store.create_rcp_definition(rcp1)
        with pytest.raises(InvalidTemplateError):
            await store.update_rcp_definition(
                created.model_copy(update={"manual_instances": [*created.manual_instances, second]})
            )
        [saved] = await store.list_rcp_definitions()
        assert [m.id for m in saved.manual_instances] == ["i1"]

    async def test_update_missing_definition(self, store):
        with pytest.raises(NotFound):
            await store.update_rcp_definition(RcpDefinition(id="nope", name="RCP"))

    async def test_delete_cascades_to_instances(self, store, rcp1):
        created = await store.create_rcp_definition(rcp1)
        await store.delete_rcp_definition(created.id)
        assert store.rcp_definitions == {}
        assert store.manual_instances == {}

    async def test_listing_is_sorted_by_name(self, store):
        await store.create_rcp_definition(RcpDefinition(id="", name="RCP Thorax"))
        await store.create_rcp_definition(RcpDefinition(id="", name="RCP Digestif"))
        names = [rcp.name for rcp in await store.list_rcp_definitions()]
        assert names == ["RCP Digestif", "RCP Thorax"]

    async def test_listing_without_instances(self, store, rcp1):
        await store.create_rcp_definition(rcp1)
        [rcp] = await store.list_rcp_definitions(with_manual_instances=False)
        assert rcp.manual_instances == []
