import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.features.audit.models.audit_job import AuditJobStatus
from app.features.audit.services.audit import create_audit_job, get_audit_job, list_audit_jobs
from app.features.audit.services.job_store import SQLAlchemyJobStore
from app.platform.db.base import Base


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def pending_job(session_factory):
    async with session_factory() as db:
        return await create_audit_job(db, url="https://example.com", user_id="user-1")


async def reload(session_factory, job_id):
    async with session_factory() as db:
        return await get_audit_job(db, job_id)


class TestSQLAlchemyJobStore:

    @pytest.mark.asyncio
    async def test_new_job_is_pending(self, session_factory, pending_job):
        job = await reload(session_factory, pending_job.id)

        assert job.status == AuditJobStatus.pending
        assert job.results is None
        assert job.error_message is None

    @pytest.mark.asyncio
    async def test_stage_updates(self, session_factory, pending_job):
        store = SQLAlchemyJobStore(session_factory)

        await store.update_status(pending_job.id, AuditJobStatus.scanning)
        assert (await reload(session_factory, pending_job.id)).status == AuditJobStatus.scanning

        await store.update_status(
            pending_job.id,
            AuditJobStatus.analyzing,
            error_message="Rate limited by analysis service. Will retry in ~10s...",
        )
        job = await reload(session_factory, pending_job.id)
        assert job.status == AuditJobStatus.analyzing
        assert job.error_message.startswith("Rate limited")

    @pytest.mark.asyncio
    async def test_completion_stores_documents_and_clears_message(self, session_factory, pending_job):
        store = SQLAlchemyJobStore(session_factory)
        await store.update_status(pending_job.id, AuditJobStatus.analyzing, error_message="Attempt 1 failed")

        await store.update_status(
            pending_job.id,
            AuditJobStatus.completed,
            results={"healthScore": 92, "summary": {"url": "https://example.com"}},
            analysis_data={"auditFindings": []},
            error_message=None,
        )

        job = await reload(session_factory, pending_job.id)
        assert job.status == AuditJobStatus.completed
        assert job.results["healthScore"] == 92
        assert job.analysis_data == {"auditFindings": []}
        assert job.error_message is None

    @pytest.mark.asyncio
    async def test_terminal_records_are_not_overwritten(self, session_factory, pending_job):
        store = SQLAlchemyJobStore(session_factory)
        await store.update_status(pending_job.id, AuditJobStatus.failed, error_message="Unreachable host")

        await store.update_status(pending_job.id, AuditJobStatus.scanning)

        job = await reload(session_factory, pending_job.id)
        assert job.status == AuditJobStatus.failed
        assert job.error_message == "Unreachable host"

    @pytest.mark.asyncio
    async def test_missing_record_is_ignored(self, session_factory):
        store = SQLAlchemyJobStore(session_factory)

        await store.update_status("does-not-exist", AuditJobStatus.scanning)

    @pytest.mark.asyncio
    async def test_unknown_fields_are_rejected(self, session_factory, pending_job):
        store = SQLAlchemyJobStore(session_factory)

        with pytest.raises(ValueError, match="url"):
            await store.update_status(pending_job.id, AuditJobStatus.scanning, url="https://evil.example")


class TestAuditHistory:

    @pytest.mark.asyncio
    async def test_history_is_newest_first_and_filtered_by_user(self, session_factory):
        async with session_factory() as db:
            first = await create_audit_job(db, url="https://one.example.com", user_id="user-1")
            second = await create_audit_job(db, url="https://two.example.com", user_id="user-1")
            await create_audit_job(db, url="https://other.example.com", user_id="user-2")

        async with session_factory() as db:
            history = await list_audit_jobs(db, user_id="user-1")
            everything = await list_audit_jobs(db)
            limited = await list_audit_jobs(db, limit=1)

        assert [job.id for job in history] == [second.id, first.id]
        assert len(everything) == 3
        assert len(limited) == 1
