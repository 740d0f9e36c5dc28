"""Tests for the patrol run: claim, reconcile, review, post, commit."""

import os
import subprocess
import sys
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from prpatrol_core.errors import CallTimeoutError
from prpatrol_core.formatter import sha_marker
from prpatrol_core.models import CommitInfo, PullRequestInfo, RateLimit, RemoteComment, ReviewResult
from prpatrol_core.orchestrator import Orchestrator, call_with_deadline
from prpatrol_store.base import LedgerError
from prpatrol_store.sqlite import SQLiteLedger
from prpatrol_store.status import StatusStore

SHA = "a" * 40
SHA2 = "b" * 40
IDENTITY = "patrol-bot"
COMMITTED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _pr(number, author="alice", repo="widgets"):
    return PullRequestInfo(owner="octo", repo=repo, number=number, head_branch=f"feature/{number}", author_login=author)


@pytest.fixture
def client():
    c = MagicMock()
    c.get_rate_limit.return_value = RateLimit(remaining=4000, limit=5000, reset_epoch_seconds=1700000000)
    c.list_open_pulls.return_value = [_pr(1)]
    c.get_latest_commit.return_value = CommitInfo(sha=SHA, committed_date=COMMITTED)
    c.list_comments.return_value = []
    c.get_diff.return_value = "diff --git a/app.py b/app.py\n+x = 1\n"
    return c


@pytest.fixture
def reviewer():
    r = MagicMock()
    r.review.return_value = ReviewResult(content="Looks good overall.")
    return r


@pytest.fixture
def ledger(tmp_path):
    store = SQLiteLedger(db_path=str(tmp_path / "cache.sqlite"))
    yield store
    store.close()


@pytest.fixture
def status_store(tmp_path):
    return StatusStore(str(tmp_path / "status.json"))


@pytest.fixture
def make_orchestrator(client, reviewer, ledger, status_store):
    def _make(**kwargs):
        options = {
            "client": client,
            "ledger": ledger,
            "status_store": status_store,
            "identity": IDENTITY,
            "reviewer": reviewer,
            "call_timeout": 0,
        }
        options.update(kwargs)
        return Orchestrator(**options)

    return _make


# ---------------------------------------------------------------------------
# Happy path and idempotency
# ---------------------------------------------------------------------------


class TestRun:
    def test_posts_review_and_commits(self, make_orchestrator, client, reviewer, ledger, status_store):
        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.posted == 1
        assert summary.mode == "idle"
        reviewer.review.assert_called_once()
        client.post_comment.assert_called_once()
        body = client.post_comment.call_args.args[2]
        assert "Looks good overall." in body
        assert sha_marker(SHA) in body

        entry = ledger.get("octo", "widgets", 1)
        assert entry.latest_sha == SHA
        assert entry.commented is True
        assert status_store.read().mode == "idle"
        assert ledger.list_runs()[0].status == "success"

    def test_second_run_posts_nothing(self, make_orchestrator, client):
        make_orchestrator().run(["octo/widgets"])
        summary = make_orchestrator().run(["octo/widgets"])

        assert client.post_comment.call_count == 1
        assert summary.posted == 0
        assert summary.skipped == 1

    def test_new_head_commit_is_reviewed_again(self, make_orchestrator, client, ledger):
        make_orchestrator().run(["octo/widgets"])
        client.get_latest_commit.return_value = CommitInfo(sha=SHA2, committed_date=COMMITTED + timedelta(hours=1))

        make_orchestrator().run(["octo/widgets"])

        assert client.post_comment.call_count == 2
        assert ledger.get("octo", "widgets", 1).latest_sha == SHA2

    def test_trivial_change_posts_skip_notice(self, make_orchestrator, client, reviewer, ledger):
        reviewer.review.return_value = ReviewResult(content="", skipped=True, reason="Trivial change")

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.posted == 1
        body = client.post_comment.call_args.args[2]
        assert "Review skipped: Trivial change" in body
        assert ledger.get("octo", "widgets", 1).commented is True

    def test_progress_steps_published(self, make_orchestrator, status_store, mocker):
        write = mocker.spy(status_store, "write")

        make_orchestrator().run(["octo/widgets"])

        modes = [c.args[0].mode for c in write.call_args_list]
        steps = [c.args[0].current_task.step for c in write.call_args_list if c.args[0].current_task]
        assert modes[0] == "running"
        assert modes[-1] == "idle"
        assert steps == ["diff", "reviewing", "commenting"]

    def test_no_repositories(self, make_orchestrator, client, ledger, status_store):
        summary = make_orchestrator().run(["# nothing here", ""])

        assert summary.repositories == 0
        client.get_rate_limit.assert_not_called()
        assert status_store.read().mode == "idle"
        assert ledger.list_runs()[0].status == "success"

    def test_reviewer_required_outside_dry_run(self, make_orchestrator):
        with pytest.raises(ValueError):
            make_orchestrator(reviewer=None).run(["octo/widgets"])


# ---------------------------------------------------------------------------
# Rate limit
# ---------------------------------------------------------------------------


class TestRateLimit:
    def test_low_budget_postpones_run(self, make_orchestrator, client, ledger, status_store):
        client.get_rate_limit.return_value = RateLimit(remaining=50, limit=5000, reset_epoch_seconds=1700000000)

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.mode == "waiting"
        client.list_open_pulls.assert_not_called()
        assert status_store.read().mode == "waiting"
        assert ledger.list_runs()[0].status == "success"

    def test_unreadable_budget_postpones_run(self, make_orchestrator, client, status_store):
        client.get_rate_limit.side_effect = RuntimeError("503")

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.mode == "waiting"
        client.list_open_pulls.assert_not_called()
        assert status_store.read().mode == "waiting"


# ---------------------------------------------------------------------------
# Reconciliation and filtering
# ---------------------------------------------------------------------------


class TestSkips:
    def test_existing_remote_comment_commits_without_posting(self, make_orchestrator, client, reviewer, ledger):
        client.list_comments.return_value = [
            RemoteComment(author_login=IDENTITY, created_at=COMMITTED + timedelta(minutes=3), updated_at=None)
        ]

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.skipped == 1
        client.post_comment.assert_not_called()
        reviewer.review.assert_not_called()
        assert ledger.try_claim("octo", "widgets", 1, SHA) is False

    def test_comment_from_someone_else_does_not_count(self, make_orchestrator, client):
        client.list_comments.return_value = [
            RemoteComment(author_login="alice", created_at=COMMITTED + timedelta(minutes=3), updated_at=None)
        ]

        make_orchestrator().run(["octo/widgets"])

        client.post_comment.assert_called_once()

    def test_pull_without_commits_is_skipped(self, make_orchestrator, client, ledger):
        client.get_latest_commit.return_value = None

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.skipped == 1
        client.post_comment.assert_not_called()
        assert ledger.get("octo", "widgets", 1) is None

    def test_target_filter_others_excludes_own_pulls(self, make_orchestrator, client):
        client.list_open_pulls.return_value = [_pr(1, author=IDENTITY), _pr(2)]

        summary = make_orchestrator(target_filter="others").run(["octo/widgets"])

        assert summary.pulls_seen == 1
        assert [c.args[1] for c in client.post_comment.call_args_list] == [2]

    def test_invalid_repository_lines_are_ignored(self, make_orchestrator, client):
        make_orchestrator().run(["bad format", "octo/widgets"])
        client.list_open_pulls.assert_called_once()


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailures:
    def test_listing_failure_skips_only_that_repository(self, make_orchestrator, client):
        def _list(ref):
            if ref.name == "broken":
                raise RuntimeError("404")
            return [_pr(1, repo=ref.name)]

        client.list_open_pulls.side_effect = _list

        summary = make_orchestrator().run(["octo/broken", "octo/widgets"])

        assert summary.repositories_failed == 1
        assert summary.posted == 1
        assert summary.mode == "idle"

    def test_post_failure_leaves_claim_open(self, make_orchestrator, client, ledger):
        client.post_comment.side_effect = RuntimeError("403")

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.failed == 1
        entry = ledger.get("octo", "widgets", 1)
        assert entry.latest_sha == SHA
        assert entry.commented is False
        assert ledger.list_runs()[0].status == "success"

    def test_failed_pull_is_retried_next_run(self, make_orchestrator, client, ledger):
        client.post_comment.side_effect = [RuntimeError("403"), None]

        make_orchestrator().run(["octo/widgets"])
        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.posted == 1
        assert client.post_comment.call_count == 2
        assert ledger.get("octo", "widgets", 1).commented is True

    def test_reconciliation_failure_does_not_post(self, make_orchestrator, client, ledger):
        client.list_comments.side_effect = RuntimeError("502")

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.failed == 1
        client.post_comment.assert_not_called()
        assert ledger.get("octo", "widgets", 1).commented is False

    def test_one_failing_pull_does_not_stop_the_next(self, make_orchestrator, client, reviewer):
        client.list_open_pulls.return_value = [_pr(1), _pr(2)]
        reviewer.review.side_effect = [RuntimeError("model down"), ReviewResult(content="ok")]

        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.failed == 1
        assert summary.posted == 1

    def test_ledger_failure_aborts_run(self, make_orchestrator, ledger, status_store, mocker):
        mocker.patch.object(ledger, "try_claim", side_effect=LedgerError("database is locked"))

        with pytest.raises(LedgerError):
            make_orchestrator().run(["octo/widgets"])

        status = status_store.read()
        assert status.mode == "error"
        assert "database is locked" in status.error
        assert ledger.list_runs()[0].status == "error"

    def test_status_write_failure_closes_run_as_error(self, make_orchestrator, ledger, status_store, mocker):
        mocker.patch.object(status_store, "write", side_effect=OSError("disk full"))

        with pytest.raises(OSError):
            make_orchestrator().run(["octo/widgets"])

        record = ledger.list_runs()[0]
        assert record.status == "error"
        assert record.finished_at is not None

    def test_error_status_write_failure_keeps_original_error(self, make_orchestrator, ledger, status_store, mocker):
        real_write = status_store.write

        def _write(status):
            if status.mode == "error":
                raise OSError("disk full")
            real_write(status)

        mocker.patch.object(status_store, "write", side_effect=_write)
        mocker.patch.object(ledger, "try_claim", side_effect=LedgerError("database is locked"))

        with pytest.raises(LedgerError):
            make_orchestrator().run(["octo/widgets"])

        assert ledger.list_runs()[0].status == "error"


# ---------------------------------------------------------------------------
# Dry run and preview
# ---------------------------------------------------------------------------


class TestDryRun:
    def test_dry_run_reports_without_posting(self, make_orchestrator, client, ledger):
        summary = make_orchestrator(reviewer=None).run(["octo/widgets"], dry_run=True)

        assert summary.would_review == ["octo/widgets#1"]
        client.post_comment.assert_not_called()
        client.get_diff.assert_not_called()
        assert ledger.get("octo", "widgets", 1).commented is False

    def test_real_run_after_dry_run_still_posts(self, make_orchestrator, client):
        make_orchestrator().run(["octo/widgets"], dry_run=True)
        summary = make_orchestrator().run(["octo/widgets"])

        assert summary.posted == 1


class TestListTargets:
    def test_states(self, make_orchestrator, client, ledger):
        client.list_open_pulls.return_value = [_pr(1), _pr(2), _pr(3)]
        ledger.commit("octo", "widgets", 1, SHA)

        def _latest(ref, number):
            if number == 3:
                return None
            return CommitInfo(sha=SHA, committed_date=COMMITTED)

        client.get_latest_commit.side_effect = _latest

        previews = make_orchestrator(reviewer=None).list_targets(["octo/widgets"])

        assert [(p.number, p.state) for p in previews] == [(1, "done"), (2, "pending"), (3, "no-commits")]
        assert previews[0].repo == "octo/widgets"
        assert previews[1].head_branch == "feature/2"

    def test_does_not_claim(self, make_orchestrator, ledger):
        make_orchestrator(reviewer=None).list_targets(["octo/widgets"])
        assert ledger.get("octo", "widgets", 1) is None

    def test_commit_lookup_failure_marks_unknown(self, make_orchestrator, client):
        client.get_latest_commit.side_effect = RuntimeError("500")

        previews = make_orchestrator(reviewer=None).list_targets(["octo/widgets"])

        assert previews[0].state == "unknown"
        assert previews[0].sha is None


# ---------------------------------------------------------------------------
# Per-call deadline
# ---------------------------------------------------------------------------


class TestCallWithDeadline:
    def test_returns_result(self):
        assert call_with_deadline(lambda a, b: a + b, 1, 2, timeout=5, operation="add") == 3

    def test_zero_timeout_calls_inline(self):
        assert call_with_deadline(lambda: "inline", timeout=0, operation="noop") == "inline"

    def test_slow_call_times_out(self):
        with pytest.raises(CallTimeoutError, match="slow call timed out after 0.05s"):
            call_with_deadline(time.sleep, 1, timeout=0.05, operation="slow call")

    def test_errors_propagate(self):
        def _boom():
            raise KeyError("x")

        with pytest.raises(KeyError):
            call_with_deadline(_boom, timeout=5, operation="boom")

    def test_hung_review_fails_only_that_pull(self, make_orchestrator, reviewer, ledger):
        reviewer.review.side_effect = lambda diff, target: time.sleep(1)

        summary = make_orchestrator(call_timeout=0.05).run(["octo/widgets"])

        assert summary.failed == 1
        assert ledger.get("octo", "widgets", 1).commented is False

    def test_abandoned_call_does_not_block_exit(self):
        script = (
            "import time\n"
            "from prpatrol_core.orchestrator import call_with_deadline\n"
            "try:\n"
            "    call_with_deadline(time.sleep, 10, timeout=0.1, operation='hung call')\n"
            "except TimeoutError as e:\n"
            "    print(e)\n"
        )
        env = {**os.environ, "PYTHONPATH": os.pathsep.join(p for p in sys.path if p)}

        started = time.monotonic()
        result = subprocess.run([sys.executable, "-c", script], capture_output=True, text=True, timeout=30, env=env)
        elapsed = time.monotonic() - started

        assert result.returncode == 0, result.stderr
        assert "hung call timed out after 0.1s" in result.stdout
        assert elapsed < 5

    def test_base_exceptions_from_worker_propagate(self):
        def _exit():
            raise SystemExit(3)

        with pytest.raises(SystemExit):
            call_with_deadline(_exit, timeout=5, operation="exit")
