"""Unit tests for imgsync.client."""

from __future__ import annotations

import unittest
from unittest.mock import patch

from conftest import (
    BrokenStream,
    FakeRuntime,
    RecordingCredentials,
    TransferError,
    make_backoff,
    make_config,
)

from imgsync.auth import StaticCredentials
from imgsync.client import ANONYMOUS_PUSH_AUTH, Client, FilterError
from imgsync.ports import PortBinding, PortSpecError
from imgsync.reference import InvalidReference


def _client(runtime, creds=None, retries=0, delay=5.0):
    backoff, sleep = make_backoff(retries, delay)
    client = Client(runtime, creds, make_config(retries=retries), backoff=backoff)
    return client, sleep


class _Quiet(unittest.TestCase):
    """Silence console output for the whole test case."""

    def setUp(self):
        patcher = patch("imgsync.client.log")
        patcher.start()
        self.addCleanup(patcher.stop)


class TestCredentialLookup(_Quiet):

    def test_pull_asks_for_source_host(self):
        creds = RecordingCredentials()
        client, _ = _client(FakeRuntime(), creds)
        client.pull("ghcr.io/org/app:1.0")
        self.assertEqual(creds.hosts, ["ghcr.io"])

    def test_pull_implicit_docker_hub(self):
        creds = RecordingCredentials()
        client, _ = _client(FakeRuntime(), creds)
        client.pull("nginx:1.25")
        self.assertEqual(creds.hosts, ["docker.io"])

    def test_push_asks_for_destination_host(self):
        creds = RecordingCredentials()
        client, _ = _client(FakeRuntime(), creds)
        client.push("localhost:5000/mirror/app:1.0")
        self.assertEqual(creds.hosts, ["localhost:5000"])

    def test_repush_uses_each_side_host(self):
        creds = RecordingCredentials()
        client, _ = _client(FakeRuntime(), creds)
        client.repush("quay.io/src/app:1", "registry.example.com/dst/app:1")
        self.assertEqual(creds.hosts, ["quay.io", "registry.example.com"])

    def test_lookup_not_cached(self):
        creds = RecordingCredentials()
        client, _ = _client(FakeRuntime(), creds)
        client.pull("quay.io/a/b:1")
        client.pull("quay.io/a/b:1")
        self.assertEqual(creds.hosts, ["quay.io", "quay.io"])

    def test_callable_credentials(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime, lambda host: "tok" if host == "quay.io" else "")
        client.pull("quay.io/a/b:1")
        self.assertEqual(runtime.calls[0], ("pull", "quay.io/a/b:1", "tok"))

    def test_malformed_reference_fails_before_runtime(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        with self.assertRaises(InvalidReference):
            client.pull("Bad Ref")
        self.assertEqual(runtime.calls, [])


class TestAuthShape(_Quiet):
    """Pull omits auth when absent; push sends the placeholder."""

    def test_pull_without_credential_sends_no_auth(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        client.pull("quay.io/a/b:1")
        self.assertIsNone(runtime.calls[0][2])

    def test_pull_with_credential(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime, StaticCredentials({"quay.io": "abc"}))
        client.pull("quay.io/a/b:1")
        self.assertEqual(runtime.calls[0][2], "abc")

    def test_push_without_credential_sends_placeholder(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        client.push("quay.io/a/b:1")
        self.assertEqual(runtime.calls[0], ("push", "quay.io/a/b:1", ANONYMOUS_PUSH_AUTH))
        self.assertEqual(ANONYMOUS_PUSH_AUTH, "IA==")

    def test_push_with_credential(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime, StaticCredentials({"quay.io": "abc"}))
        client.push("quay.io/a/b:1")
        self.assertEqual(runtime.calls[0][2], "abc")


class TestPullRetry(_Quiet):

    def test_no_retries_single_attempt(self):
        runtime = FakeRuntime(pull_failures=-1)
        client, _ = _client(runtime, retries=0)
        with self.assertRaises(TransferError):
            client.pull("quay.io/a/b:1")
        self.assertEqual(runtime.pull_attempts, 1)

    def test_always_failing_attempts_n_plus_one(self):
        for n in (0, 1, 3):
            runtime = FakeRuntime(pull_failures=-1)
            client, _ = _client(runtime, retries=n)
            with self.assertRaises(TransferError) as ctx:
                client.pull("quay.io/a/b:1")
            self.assertEqual(runtime.pull_attempts, n + 1)
            self.assertIn(f"attempt {n + 1} failed", str(ctx.exception))

    def test_success_on_attempt_k(self):
        runtime = FakeRuntime(pull_failures=2)
        client, sleep = _client(runtime, retries=3)
        client.pull("quay.io/a/b:1")
        self.assertEqual(runtime.pull_attempts, 3)
        self.assertEqual(sleep.delays, [5.0, 10.0])

    def test_success_first_try_no_sleep(self):
        runtime = FakeRuntime()
        client, sleep = _client(runtime, retries=3)
        client.pull("quay.io/a/b:1")
        self.assertEqual(runtime.pull_attempts, 1)
        self.assertEqual(sleep.delays, [])

    def test_sleeps_after_last_failure_too(self):
        runtime = FakeRuntime(pull_failures=-1)
        client, sleep = _client(runtime, retries=3)
        with self.assertRaises(TransferError):
            client.pull("quay.io/a/b:1")
        self.assertEqual(sleep.delays, [5.0, 10.0, 20.0, 40.0])
        self.assertEqual(client.backoff.delay, 80.0)

    def test_delay_persists_across_pulls(self):
        client, sleep = _client(FakeRuntime(pull_failures=-1), retries=1)
        with self.assertRaises(TransferError):
            client.pull("quay.io/a/b:1")
        client.runtime = FakeRuntime(pull_failures=-1)
        with self.assertRaises(TransferError):
            client.pull("quay.io/a/c:1")
        self.assertEqual(sleep.delays, [5.0, 10.0, 20.0, 40.0])

    def test_shared_backoff_between_clients(self):
        backoff, sleep = make_backoff(0, 1.0)
        first = Client(FakeRuntime(pull_failures=-1), backoff=backoff)
        second = Client(FakeRuntime(pull_failures=-1), backoff=backoff)
        for client in (first, second):
            with self.assertRaises(TransferError):
                client.pull("quay.io/a/b:1")
        self.assertEqual(sleep.delays, [1.0, 2.0])

    def test_backoff_built_from_config(self):
        client = Client(FakeRuntime(), config=make_config(retries=2, retry_delay=3.0))
        self.assertEqual(client.backoff.tries, 3)
        self.assertEqual(client.backoff.delay, 3.0)

    def test_stream_failure_is_pull_failure(self):
        runtime = FakeRuntime(pull_stream=BrokenStream())
        client, sleep = _client(runtime, retries=2)
        with self.assertRaises(TransferError):
            client.pull("quay.io/a/b:1")
        # the stream is drained once, after the attempt loop
        self.assertEqual(runtime.pull_attempts, 1)
        self.assertEqual(sleep.delays, [])


class TestPush(_Quiet):

    def test_single_attempt(self):
        runtime = FakeRuntime(errors={"push": TransferError("denied")})
        client, sleep = _client(runtime, retries=5)
        with self.assertRaises(TransferError):
            client.push("quay.io/a/b:1")
        self.assertEqual(runtime.names(), ["push"])
        self.assertEqual(sleep.delays, [])

    def test_stream_failure_is_push_failure(self):
        runtime = FakeRuntime(push_stream=BrokenStream(lines=3))
        client, _ = _client(runtime)
        with self.assertRaises(TransferError):
            client.push("quay.io/a/b:1")


class TestTag(_Quiet):

    def test_delegates_without_credentials(self):
        runtime = FakeRuntime()
        creds = RecordingCredentials()
        client, _ = _client(runtime, creds)
        client.tag("a:1", "b:1")
        self.assertEqual(runtime.calls, [("tag", "a:1", "b:1")])
        self.assertEqual(creds.hosts, [])


class TestRePush(_Quiet):

    SRC = "docker.io/library/nginx:1.25"
    DST = "registry.example.com/mirror/nginx:1.25"

    def test_happy_path_order(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        client.repush(self.SRC, self.DST)
        self.assertEqual(runtime.names(), ["pull", "tag", "push"])
        self.assertEqual(runtime.calls[1], ("tag", self.SRC, self.DST))
        self.assertEqual(runtime.calls[2][1], self.DST)

    def test_pull_failure_stops_pipeline(self):
        runtime = FakeRuntime(pull_failures=-1)
        client, _ = _client(runtime, retries=2)
        with self.assertRaises(TransferError):
            client.repush(self.SRC, self.DST)
        self.assertEqual(runtime.names(), ["pull", "pull", "pull"])

    def test_tag_failure_skips_push(self):
        runtime = FakeRuntime(errors={"tag": TransferError("no such image")})
        client, _ = _client(runtime)
        with self.assertRaises(TransferError):
            client.repush(self.SRC, self.DST)
        self.assertNotIn("push", runtime.names())

    def test_push_failure_returned_after_one_tag(self):
        err = TransferError("unauthorized")
        runtime = FakeRuntime(errors={"push": err})
        client, _ = _client(runtime)
        with self.assertRaises(TransferError) as ctx:
            client.repush(self.SRC, self.DST)
        self.assertIs(ctx.exception, err)
        tags = [c for c in runtime.calls if c[0] == "tag"]
        self.assertEqual(tags, [("tag", self.SRC, self.DST)])


class TestRun(_Quiet):

    def test_invalid_port_spec_fails_first(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        with self.assertRaises(PortSpecError):
            client.run("nginx:1.25", "web", ["abc"])
        self.assertEqual(runtime.calls, [])

    def test_pull_create_start(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        cid = client.run("nginx:1.25", "web", ["8080:80", "443"])
        self.assertEqual(cid, "c0ffee")
        self.assertEqual(runtime.names(), ["pull", "create", "start"])
        _, image, name, exposed, bindings = runtime.calls[1]
        self.assertEqual(image, "nginx:1.25")
        self.assertEqual(name, "web")
        self.assertEqual(exposed, {"80/tcp", "443/tcp"})
        self.assertEqual(bindings, {"80/tcp": [PortBinding("", "8080")]})
        self.assertEqual(runtime.calls[2], ("start", "c0ffee"))

    def test_pull_retries_apply(self):
        runtime = FakeRuntime(pull_failures=1)
        client, sleep = _client(runtime, retries=1)
        client.run("nginx:1.25", "web")
        self.assertEqual(runtime.names(), ["pull", "pull", "create", "start"])
        self.assertEqual(sleep.delays, [5.0])

    def test_pull_failure_no_create(self):
        runtime = FakeRuntime(pull_failures=-1)
        client, _ = _client(runtime)
        with self.assertRaises(TransferError):
            client.run("nginx:1.25", "web")
        self.assertEqual(runtime.names(), ["pull"])

    def test_create_failure_propagates(self):
        runtime = FakeRuntime(errors={"create": TransferError("name in use")})
        client, _ = _client(runtime)
        with self.assertRaises(TransferError):
            client.run("nginx:1.25", "web")
        self.assertEqual(runtime.names(), ["pull", "create"])

    def test_start_failure_removes_container(self):
        err = TransferError("port already allocated")
        runtime = FakeRuntime(errors={"start": err})
        client, _ = _client(runtime)
        with self.assertRaises(TransferError) as ctx:
            client.run("nginx:1.25", "web", ["8080:80"])
        self.assertIs(ctx.exception, err)
        self.assertEqual(runtime.calls[-1], ("remove", "c0ffee", True))

    def test_start_failure_cleanup_error_keeps_start_error(self):
        err = TransferError("port already allocated")
        runtime = FakeRuntime(errors={"start": err, "remove": TransferError("gone")})
        client, _ = _client(runtime)
        with self.assertRaises(TransferError) as ctx:
            client.run("nginx:1.25", "web")
        self.assertIs(ctx.exception, err)


class TestForceRemove(_Quiet):

    def test_force_flag(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        client.force_remove("c0ffee")
        self.assertEqual(runtime.calls, [("remove", "c0ffee", True)])

    def test_error_propagates(self):
        runtime = FakeRuntime(errors={"remove": TransferError("no such container")})
        client, _ = _client(runtime)
        with self.assertRaises(TransferError):
            client.force_remove("c0ffee")


class TestListImages(_Quiet):

    def test_reference_filter(self):
        summaries = [{"Id": "sha256:aaa", "Names": ["myrepo:1"]}]
        runtime = FakeRuntime(images=summaries)
        client, _ = _client(runtime)
        result = client.list_images_for_repo("myrepo")
        self.assertEqual(result, summaries)
        self.assertEqual(runtime.calls, [("images", {"reference": "myrepo"})])

    def test_bad_filter_rejected(self):
        runtime = FakeRuntime()
        client, _ = _client(runtime)
        for repo in ("", "my repo", "a=b"):
            with self.assertRaises(FilterError):
                client.list_images_for_repo(repo)
        self.assertEqual(runtime.calls, [])


class TestConfigProperty(unittest.TestCase):

    def test_exposes_config(self):
        cfg = make_config(retries=4)
        client = Client(FakeRuntime(), config=cfg)
        self.assertIs(client.config, cfg)

    def test_default_config(self):
        client = Client(FakeRuntime())
        self.assertEqual(client.config.retries, 0)
        self.assertEqual(client.config.retry_delay, 5.0)


if __name__ == "__main__":
    unittest.main()
