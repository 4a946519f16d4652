import types
import unittest

from fastapi import HTTPException

from contentjobs.errors import JobRejectedError, UnknownJobTypeError
from contentjobs.models import AggregateSyncResult
from contentjobs.routers import jobs as jobs_router


class _FakeJobQueue:
    def __init__(self) -> None:
        self.enqueued: list[dict] = []

    async def enqueue(self, job_type, data, caller_context=None, options=None):
        if job_type == "missing":
            raise UnknownJobTypeError(job_type)
        if data == {"bad": True}:
            raise JobRejectedError(job_type, "JOB-REJECTED")
        self.enqueued.append(
            {"job_type": job_type, "data": data, "caller_context": caller_context, "options": options}
        )
        return "JOB-1"

    async def wait_for(self, job_id, timeout=None):
        return {"id": job_id, "status": "completed", "result": {"success": True}}

    async def get_job(self, job_id):
        if job_id == "JOB-404":
            return None
        return {"id": job_id, "status": "queued"}

    async def list_jobs(self, limit=20, status=None):
        return [{"id": "JOB-1", "status": "completed"}][:limit]

    async def get_observability_snapshot(self):
        return {"running": True, "workers": 1, "queueDepth": 0}


class _FakeAggregateSync:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def sync_aggregates(self, progress=None, *, trigger="manual"):
        self.calls.append(trigger)
        return AggregateSyncResult(aggregateType="series", upserted=1, aggregateIds=["series-ai"])


class JobsRouterTests(unittest.IsolatedAsyncioTestCase):
    def _request(self, queue=None, aggregate_sync=None):
        return types.SimpleNamespace(
            app=types.SimpleNamespace(
                state=types.SimpleNamespace(job_queue=queue, aggregate_sync=aggregate_sync)
            )
        )

    async def test_list_and_get_jobs(self) -> None:
        request = self._request(_FakeJobQueue())

        listing = await jobs_router.list_jobs(request, limit=10, status=None)
        self.assertEqual(listing["status"], "ok")
        self.assertEqual(listing["count"], 1)
        self.assertTrue(listing["queue"]["running"])

        job = await jobs_router.get_job(request, "JOB-1")
        self.assertEqual(job["status"], "queued")

        with self.assertRaises(HTTPException) as ctx:
            await jobs_router.get_job(request, "JOB-404")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_enqueue_background_and_wait(self) -> None:
        queue = _FakeJobQueue()
        request = self._request(queue)
        body = jobs_router.EnqueueRequest(
            data={"entityId": "n1", "sourceEntityType": "note", "targetEntityType": "post"},
            callerContext={"interfaceId": "web"},
        )

        queued = await jobs_router.enqueue_job(request, "content-derivation", body)
        self.assertEqual(queued, {"status": "ok", "mode": "background", "jobId": "JOB-1"})
        self.assertEqual(queue.enqueued[0]["caller_context"].interfaceId, "web")
        self.assertEqual(queue.enqueued[0]["options"].source, "api")

        waited = await jobs_router.enqueue_job(
            request,
            "content-derivation",
            jobs_router.EnqueueRequest(data={"entityId": "n1"}, wait=True),
        )
        self.assertEqual(waited["mode"], "foreground")
        self.assertEqual(waited["job"]["status"], "completed")

    async def test_enqueue_errors_map_to_http_status(self) -> None:
        request = self._request(_FakeJobQueue())

        with self.assertRaises(HTTPException) as ctx:
            await jobs_router.enqueue_job(request, "missing", jobs_router.EnqueueRequest(data={}))
        self.assertEqual(ctx.exception.status_code, 404)

        with self.assertRaises(HTTPException) as ctx:
            await jobs_router.enqueue_job(request, "content-derivation", jobs_router.EnqueueRequest(data={"bad": True}))
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.detail["jobId"], "JOB-REJECTED")

    async def test_queue_not_initialized(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await jobs_router.list_jobs(self._request(None), limit=10, status=None)
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_aggregate_sync_background(self) -> None:
        queue = _FakeJobQueue()
        manager = _FakeAggregateSync()
        payload = await jobs_router.trigger_aggregate_sync(
            self._request(queue, manager),
            jobs_router.AggregateSyncRequest(reason="editor"),
        )

        self.assertEqual(payload["mode"], "background")
        self.assertEqual(queue.enqueued[0]["job_type"], "aggregate-sync")
        self.assertEqual(queue.enqueued[0]["data"].reason, "editor")
        self.assertEqual(manager.calls, [])

    async def test_aggregate_sync_foreground(self) -> None:
        manager = _FakeAggregateSync()
        payload = await jobs_router.trigger_aggregate_sync(
            self._request(_FakeJobQueue(), manager),
            jobs_router.AggregateSyncRequest(background=False, trigger="cli"),
        )

        self.assertEqual(payload["mode"], "foreground")
        self.assertEqual(payload["result"]["aggregateIds"], ["series-ai"])
        self.assertEqual(manager.calls, ["cli"])


if __name__ == "__main__":
    unittest.main()
