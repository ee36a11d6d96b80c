import asyncio
import unittest

from fakes import FakeHttp, FakeTransportFactory, completed_event, make_response

from forge_media_api.api import execute
from forge_media_api.core.artifacts import ArtifactMaterializer
from forge_media_api.core.contracts import Credentials, Identity, ItemInput
from forge_media_api.core.errors import (
    ConnectionError,
    InvalidRequestError,
    RemoteJobError,
    SessionStateError,
    TimeoutError,
)
from forge_media_api.core.options import ModelOptionProvider
from forge_media_api.core.session import Session, SessionState
from forge_media_api.transport.base import JobEvent

CREDENTIALS = Credentials(username="artist", password="secret", app_id="workflow-1")
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _session(factory: FakeTransportFactory, **kwargs) -> Session:
    return Session(factory, CREDENTIALS, Identity("media-forge-test"), **kwargs)


class TestSessionLifecycle(unittest.IsolatedAsyncioTestCase):
    async def test_close_is_idempotent(self) -> None:
        factory = FakeTransportFactory()
        session = _session(factory)
        await session.connect()
        self.assertTrue(session.connected)

        await session.close()
        await session.close()

        transport = factory.created[0]
        self.assertEqual(session.state, SessionState.CLOSED)
        self.assertEqual(transport.disconnect_calls, 1)
        self.assertIn("detach_listeners", transport.fake_handle.calls)

    async def test_close_without_connect(self) -> None:
        factory = FakeTransportFactory()
        session = _session(factory)
        await session.close()
        self.assertEqual(session.state, SessionState.CLOSED)
        self.assertEqual(factory.created, [])

    async def test_hanging_disconnect_is_bounded(self) -> None:
        factory = FakeTransportFactory(hang_disconnect=True)
        session = _session(factory)
        await session.connect()

        await session.close(timeout_ms=50)

        handle = factory.created[0].fake_handle
        self.assertEqual(session.state, SessionState.CLOSED_FORCED)
        self.assertEqual(handle.calls, ["close", "force_close", "detach_listeners"])
        self.assertFalse(session.connected)

    async def test_connect_failure_returns_to_idle(self) -> None:
        factory = FakeTransportFactory(fail_connect=True)
        session = _session(factory)
        with self.assertRaises(ConnectionError):
            await session.connect()
        self.assertEqual(session.state, SessionState.IDLE)

        await session.close()
        self.assertEqual(session.state, SessionState.CLOSED)
        self.assertEqual(factory.created[0].disconnect_calls, 1)

    async def test_connect_twice_is_rejected(self) -> None:
        session = _session(FakeTransportFactory())
        await session.connect()
        with self.assertRaises(SessionStateError):
            await session.connect()
        await session.close()

    async def test_context_manager_closes(self) -> None:
        factory = FakeTransportFactory()
        async with _session(factory) as session:
            self.assertTrue(session.connected)
        self.assertEqual(session.state, SessionState.CLOSED)

    async def test_context_manager_closes_when_connect_fails(self) -> None:
        factory = FakeTransportFactory(fail_connect=True)
        session = _session(factory)
        with self.assertRaises(ConnectionError):
            async with session:
                self.fail("body must not run")

        transport = factory.created[0]
        self.assertEqual(session.state, SessionState.CLOSED)
        self.assertEqual(transport.disconnect_calls, 1)
        self.assertIn("detach_listeners", transport.fake_handle.calls)

    async def test_cancelled_close_still_tears_down(self) -> None:
        factory = FakeTransportFactory(hang_disconnect=True)
        session = _session(factory)
        await session.connect()

        closing = asyncio.create_task(session.close(timeout_ms=5000))
        await asyncio.sleep(0.05)
        closing.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await closing

        handle = factory.created[0].fake_handle
        self.assertEqual(session.state, SessionState.CLOSED_FORCED)
        self.assertEqual(handle.calls, ["close", "force_close", "detach_listeners"])
        await session.close()
        self.assertEqual(factory.created[0].disconnect_calls, 1)

    async def test_connect_registers_event_listener(self) -> None:
        factory = FakeTransportFactory()
        async with _session(factory):
            listeners = factory.created[0].listeners
            self.assertEqual(len(listeners), 1)
            with self.assertLogs("forge_media_api.core.session", level="DEBUG") as logs:
                listeners[0](JobEvent(type="progress", project_id="p1", progress=0.25))
        self.assertIn("p1 progress progress=0.25", logs.output[0])


class TestSessionSubmit(unittest.IsolatedAsyncioTestCase):
    async def test_submit_before_connect(self) -> None:
        session = _session(FakeTransportFactory())
        with self.assertRaises(SessionStateError):
            await session.submit("image", {}, timeout_ms=1000)

    async def test_progress_then_completed(self) -> None:
        factory = FakeTransportFactory(
            events=[
                JobEvent(type="progress", project_id="p1", progress=0.5),
                completed_event({"projectId": "p1", "completed": True}),
            ]
        )
        async with _session(factory) as session:
            result = await session.submit("image", {"modelId": "m"}, timeout_ms=1000)
        self.assertEqual(result["projectId"], "p1")
        self.assertEqual(factory.created[0].submitted, [("image", {"modelId": "m"})])

    async def test_timeout_keeps_session_connected(self) -> None:
        factory = FakeTransportFactory(events=["hang"])
        session = _session(factory)
        await session.connect()
        try:
            with self.assertRaises(TimeoutError) as ctx:
                await session.submit("video", {}, timeout_ms=50)
            self.assertEqual(ctx.exception.timeout_ms, 50)
            self.assertGreaterEqual(ctx.exception.elapsed_ms, 0)
            self.assertTrue(session.connected)
        finally:
            await session.close()

    async def test_failed_event(self) -> None:
        factory = FakeTransportFactory(
            events=[JobEvent(type="failed", project_id="p1", message="worker crashed", data={"code": 7})]
        )
        async with _session(factory) as session:
            with self.assertRaises(RemoteJobError) as ctx:
                await session.submit("image", {}, timeout_ms=1000)
        self.assertEqual(str(ctx.exception), "worker crashed")
        self.assertEqual(ctx.exception.details, {"code": 7})

    async def test_stream_without_terminal_event(self) -> None:
        factory = FakeTransportFactory(events=[JobEvent(type="progress", project_id="p2")])
        async with _session(factory) as session:
            with self.assertRaises(RemoteJobError):
                await session.submit("image", {}, timeout_ms=1000)


class TestModelOptionProvider(unittest.IsolatedAsyncioTestCase):
    async def test_edit_family_search(self) -> None:
        factory = FakeTransportFactory(
            models=[
                {"id": "qwen_image_edit_2511_fp8_lightning", "name": "Qwen Image Edit Lightning", "workerCount": 6},
                {"id": "flux1-schnell-fp8", "name": "Flux Schnell", "workerCount": 12},
                {"id": "wan_v2.2-14b-fp8_t2v", "name": "Wan 2.2 T2V", "workerCount": 3},
            ]
        )
        provider = ModelOptionProvider(CREDENTIALS, factory)

        options = await provider.list("qwen", "edit")

        self.assertEqual(len(options), 1)
        self.assertEqual(options[0].value, "qwen_image_edit_2511_fp8_lightning")
        self.assertTrue(options[0].name.endswith("(recommended)"))

        transport = factory.created[0]
        self.assertTrue(transport.identity.value.startswith("media-forge-lookup-"))
        self.assertNotEqual(transport.identity.value, CREDENTIALS.app_id)
        self.assertEqual(transport.model_filters[0]["search"], "qwen")
        self.assertEqual(transport.disconnect_calls, 1)

    async def test_lookups_use_fresh_identities(self) -> None:
        factory = FakeTransportFactory(models=[])
        provider = ModelOptionProvider(CREDENTIALS, factory)
        first = await provider.list("", "video")
        await provider.list("", None)

        self.assertEqual([option.value for option in first], [""])
        identities = {transport.identity.value for transport in factory.created}
        self.assertEqual(len(identities), 2)

    async def test_lookup_closes_on_connect_failure(self) -> None:
        factory = FakeTransportFactory(fail_connect=True)
        provider = ModelOptionProvider(CREDENTIALS, factory)
        with self.assertRaises(ConnectionError):
            await provider.list("flux")
        self.assertEqual(factory.created[0].disconnect_calls, 1)
        self.assertIn("detach_listeners", factory.created[0].fake_handle.calls)


class TestExecute(unittest.IsolatedAsyncioTestCase):
    def _items(self):
        return [
            ItemInput(
                parameters={
                    "resource": "image",
                    "operation": "generate",
                    "modelId": "flux1-schnell-fp8",
                    "positivePrompt": "a lighthouse at dusk",
                }
            ),
            ItemInput(parameters={"resource": "image", "operation": "generate", "positivePrompt": "no model"}),
            ItemInput(parameters={"resource": "account", "operation": "getBalance"}),
        ]

    def _factory(self) -> FakeTransportFactory:
        return FakeTransportFactory(
            events=[
                completed_event(
                    {
                        "projectId": "p1",
                        "imageUrls": ["https://cdn.example/p1.png"],
                        "completed": True,
                        "jobs": [{"id": "j1", "status": "completed"}],
                        "costTokens": 1.25,
                    }
                )
            ],
            balance={"sogni": 3.0, "spark": 40.5},
        )

    def _materializer(self) -> ArtifactMaterializer:
        http = FakeHttp(
            {"https://cdn.example/p1.png": make_response(200, PNG_BYTES, {"content-type": "image/png"})}
        )
        return ArtifactMaterializer(http)

    async def test_continue_on_fail_keeps_order(self) -> None:
        factory = self._factory()
        outputs = await execute(
            self._items(),
            CREDENTIALS,
            continue_on_fail=True,
            transport_factory=factory,
            materializer=self._materializer(),
        )

        self.assertEqual([output.item_index for output in outputs], [0, 1, 2])
        first, second, third = outputs
        self.assertEqual(first.json["projectId"], "p1")
        self.assertEqual(first.json["status"], "completed")
        self.assertEqual(first.json["jobs"], [{"id": "j1", "status": "completed"}])
        self.assertEqual(first.json["meta"]["cost"], 1.25)
        self.assertEqual(first.json["meta"]["resolved"]["steps"], 20)
        self.assertEqual(first.binary["image"].data, PNG_BYTES)
        self.assertEqual(first.binary["image"].filename, "p1_0.png")
        self.assertIn("model id", second.json["error"])
        self.assertEqual(third.json, {"sogni": 3.0, "spark": 40.5})

        transport = factory.created[0]
        self.assertEqual(transport.identity.value, "workflow-1")
        self.assertEqual(transport.disconnect_calls, 1)

    async def test_failure_aborts_and_closes(self) -> None:
        factory = self._factory()
        with self.assertRaises(InvalidRequestError):
            await execute(
                self._items(),
                CREDENTIALS,
                transport_factory=factory,
                materializer=self._materializer(),
            )
        transport = factory.created[0]
        self.assertEqual(len(transport.submitted), 1)
        self.assertEqual(transport.disconnect_calls, 1)
        self.assertIn("detach_listeners", transport.fake_handle.calls)

    async def test_missing_binary_reported_per_item(self) -> None:
        items = [
            ItemInput(
                parameters={
                    "resource": "image",
                    "operation": "edit",
                    "imageEditModelId": "qwen_image_edit_2511_fp8",
                    "imageEditPrompt": "make it snow",
                }
            )
        ]
        outputs = await execute(
            items, CREDENTIALS, continue_on_fail=True, transport_factory=self._factory()
        )
        self.assertEqual(
            outputs[0].json["error"], 'No binary data found in property "data" for item 0.'
        )

    async def test_estimate_and_list_models(self) -> None:
        factory = FakeTransportFactory(
            estimate={"costInSpark": 12.5, "costInUSD": 0.06},
            models=[{"id": "flux1-schnell-fp8", "name": "Flux Schnell", "workerCount": 9}],
        )
        items = [
            ItemInput(
                parameters={
                    "resource": "video",
                    "operation": "estimateCost",
                    "videoModelId": "wan_v2.2-14b-fp8_t2v",
                    "videoAdditionalFields": {"videoSettings": {"frames": 30}},
                }
            ),
            ItemInput(parameters={"resource": "model", "operation": "getAll", "options": {"minWorkers": 2}}),
            ItemInput(parameters={"resource": "model", "operation": "get", "modelId": " flux1-schnell-fp8 "}),
        ]
        outputs = await execute(items, Credentials("artist", "secret"), transport_factory=factory)

        estimate, model, single = outputs
        self.assertEqual(single.json, model.json)
        self.assertEqual(single.item_index, 2)
        self.assertEqual(estimate.json["frames"], 33)
        self.assertEqual(estimate.json["estimate"]["token"], 12.5)
        self.assertEqual(estimate.json["estimate"]["usd"], 0.06)
        self.assertEqual(model.json["id"], "flux1-schnell-fp8")
        self.assertEqual(model.json["workerCount"], 9)

        transport = factory.created[0]
        kind, payload = transport.submitted[0]
        self.assertEqual(kind, "estimate")
        self.assertEqual(payload["type"], "video")
        self.assertNotIn("waitForCompletion", payload)
        self.assertEqual(transport.model_filters, [{"sortByWorkers": True, "minWorkers": 2}])
        self.assertTrue(transport.identity.value.startswith("media-forge-"))

    async def test_connect_failure_propagates(self) -> None:
        factory = FakeTransportFactory(fail_connect=True)
        with self.assertRaises(ConnectionError):
            await execute(self._items(), CREDENTIALS, transport_factory=factory)
        self.assertEqual(factory.created[0].disconnect_calls, 1)

    async def test_download_toggle_skips_materialization(self) -> None:
        http = FakeHttp({})
        item = ItemInput(
            parameters={
                "modelId": "flux1-schnell-fp8",
                "additionalFields": {"output": {"downloadImages": "false"}},
            }
        )
        outputs = await execute(
            [item], CREDENTIALS, transport_factory=self._factory(), materializer=ArtifactMaterializer(http)
        )
        self.assertEqual(http.requested, [])
        self.assertEqual(outputs[0].binary, {})
        self.assertEqual(outputs[0].json["resultUrls"], ["https://cdn.example/p1.png"])

    async def test_download_failures_reported_on_success(self) -> None:
        factory = FakeTransportFactory(
            events=[
                completed_event(
                    {
                        "projectId": "p3",
                        "imageUrls": ["https://cdn.example/ok.png", "https://cdn.example/gone.png"],
                        "completed": True,
                    }
                )
            ]
        )
        http = FakeHttp(
            {
                "https://cdn.example/ok.png": make_response(200, PNG_BYTES),
                "https://cdn.example/gone.png": make_response(404, b"missing"),
            }
        )
        item = ItemInput(parameters={"modelId": "flux1-schnell-fp8", "additionalFields": {"numberOfImages": 2}})
        outputs = await execute(
            [item], CREDENTIALS, transport_factory=factory, materializer=ArtifactMaterializer(http)
        )

        output = outputs[0]
        self.assertEqual(output.json["status"], "completed")
        self.assertEqual(sorted(output.binary), ["image"])
        self.assertEqual(len(output.json["downloadFailures"]), 1)
        failure = output.json["downloadFailures"][0]
        self.assertEqual(failure["index"], 1)
        self.assertEqual(failure["url"], "https://cdn.example/gone.png")
        self.assertEqual(failure["statusCode"], 404)
        self.assertIn("404", failure["error"])

    async def test_get_model_requires_id(self) -> None:
        factory = FakeTransportFactory(models=[{"id": ""}])
        items = [ItemInput(parameters={"resource": "model", "operation": "get", "modelId": "   "})]
        with self.assertRaises(InvalidRequestError):
            await execute(items, CREDENTIALS, transport_factory=factory)
        self.assertEqual(factory.created[0].disconnect_calls, 1)


if __name__ == "__main__":
    unittest.main()
