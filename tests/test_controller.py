"""WorkflowController: gating, monotonic steps, consolidation, completion."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeGateway, SurfaceFactory
from marketing_hub.connections.handshake import HandshakeManager
from marketing_hub.gateway.errors import ErrorKind, RemoteError
from marketing_hub.ingest.executor import PlatformTaskExecutor
from marketing_hub.ingest.platforms import PlatformOutput
from marketing_hub.models import NO_ACCOUNT_MARKER, StepKind
from marketing_hub.workflow.controller import (
    WorkflowController,
    WorkflowLocked,
    WorkflowStepError,
    create_session,
)

INSTAGRAM = "https://www.instagram.com/acme"
TIKTOK = "https://www.tiktok.com/@acme"


@pytest.fixture
def controller(gateway, repo, session) -> WorkflowController:
    return WorkflowController(session, repo, PlatformTaskExecutor(gateway, delay=0), gateway)


def _analysis(gateway: FakeGateway) -> FakeGateway:
    gateway.on("instagram-intelligent-analysis", {
        "success": True,
        "posts_analyzed": 12,
        "insights": [{"title": "Reels outperform photos"}],
        "actionables": [
            {"title": "Reply to comments within a day", "priority": "medium"},
            {"title": "Post two reels a week", "priority": "high"},
        ],
    })
    gateway.on("tiktok-intelligent-analysis", {
        "success": True,
        "insights": [{"title": "Evening posts get more views"}],
        "actionables": [],
    })
    return gateway


def test_configure_requires_an_answer(controller):
    assert controller.step.kind == StepKind.CONFIGURE
    assert not controller.can_proceed()

    controller.set_has_account("linkedin", False)

    assert controller.can_proceed()


@pytest.mark.asyncio
async def test_gated_advance_does_not_move(controller):
    assert await controller.advance() is False
    assert controller.session.step_index == 0


@pytest.mark.asyncio
async def test_configure_persists_answers(controller, repo):
    controller.set_url("instagram", INSTAGRAM)
    controller.set_has_account("linkedin", False)

    assert await controller.advance() is True

    assert controller.session.step_index == 1
    configs = repo.get_platform_configs("user-1")
    assert configs == {
        "instagram": {"url": INSTAGRAM, "has_account": True},
        "linkedin": {"url": NO_ACCOUNT_MARKER, "has_account": False},
    }
    assert repo.get_company("user-1")["name"] == "Acme"


def test_set_has_account_clears_url(controller):
    controller.set_url("instagram", INSTAGRAM)
    conn = controller.set_has_account("instagram", None)

    assert conn.url == ""
    assert not conn.connected


def test_unknown_platform_is_rejected(controller):
    with pytest.raises(KeyError):
        controller.set_url("myspace", "https://myspace.com/acme")


@pytest.mark.asyncio
async def test_failed_action_keeps_index(controller, repo, monkeypatch):
    def broken(user_id, connections):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repo, "save_platform_configs", broken)
    controller.set_url("instagram", INSTAGRAM)

    with pytest.raises(WorkflowStepError, match="database is locked"):
        await controller.advance()

    assert controller.session.step_index == 0
    assert controller.session.last_error == "database is locked"
    assert not controller.session.running
    assert controller.can_proceed()


@pytest.mark.asyncio
async def test_full_run_consolidates_insights(gateway, controller, repo):
    gateway.on("instagram-scraper", {"success": True, "data": {"posts": [{}, {}]}})
    gateway.on("tiktok-scraper", RemoteError(ErrorKind.TRANSPORT, "tiktok scraper down"))
    _analysis(gateway)
    gateway.on("advanced-business-insights", RemoteError(ErrorKind.UNKNOWN, "model overloaded"))
    progress: list[int] = []
    controller.progress_listener = lambda pct, msg: progress.append(pct)

    controller.set_url("instagram", INSTAGRAM)
    controller.set_url("tiktok", TIKTOK)
    await controller.advance()
    await controller.advance()

    ingest = [r for r in controller.session.results if r.phase == "ingest"]
    assert [(r.platform, r.success) for r in ingest] == [("instagram", True), ("tiktok", False)]
    assert controller.session.step_index == 2

    await controller.advance()

    assert controller.session.step_index == 3
    assert controller.is_last_step
    assert gateway.count("advanced-business-insights") == 1
    titles = {i["title"] for i in controller.session.insights}
    # tiktok never ingested, so it is not analyzed either
    assert titles == {"Reels outperform photos"}
    assert gateway.count("tiktok-intelligent-analysis") == 0
    assert controller.session.ingested_platforms == ["instagram"]
    assert [a["title"] for a in controller.session.actionables] == [
        "Post two reels a week", "Reply to comments within a day",
    ]
    assert controller.session.actionables[0]["platform"] == "instagram"
    assert progress[-1] == 95
    assert controller.session.current_task == ""


@pytest.mark.asyncio
async def test_back_is_side_effect_free(gateway, controller):
    controller.set_url("instagram", INSTAGRAM)
    await controller.advance()
    calls = len(gateway.calls)

    assert controller.back() == 0
    assert controller.back() == 0
    assert len(gateway.calls) == calls
    assert controller.step_completed(0) is False


@pytest.mark.asyncio
async def test_advance_blocked_while_running(gateway, repo, session):
    release = asyncio.Event()
    controller = WorkflowController(session, repo, _blocking_executor(gateway, release), gateway)
    controller.set_url("instagram", INSTAGRAM)
    await controller.advance()

    task = asyncio.create_task(controller.advance())
    await asyncio.sleep(0)
    assert controller.session.running
    assert not controller.can_proceed()
    assert await controller.advance() is False

    release.set()
    assert await task is True
    assert controller.session.step_index == 2


@pytest.mark.asyncio
async def test_finish_only_on_last_step(controller, repo):
    assert await controller.finish() is False
    assert not repo.is_onboarding_completed("user-1", "1.0")

    controller.session.step_index = 3
    assert await controller.finish() is True
    assert await controller.finish() is True

    assert controller.session.completed
    assert controller.step_completed(3)
    rows = repo.db.fetchall("SELECT * FROM onboarding_status WHERE user_id = ?", ("user-1",))
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_advance_stops_at_last_step(controller):
    controller.session.step_index = 3
    assert await controller.advance() is False
    assert controller.session.step_index == 3


def test_load_existing_maps_marker(gateway, repo):
    repo.upsert_company("user-2", "Globex", "globex_99")
    session = create_session("user-2", ["instagram", "linkedin", "tiktok"])
    session.connections[0].url = INSTAGRAM
    session.connections[0].has_account = True
    session.connections[1].has_account = False
    repo.save_platform_configs("user-2", session.connections)

    fresh = create_session("user-2", ["instagram", "linkedin", "tiktok"])
    controller = WorkflowController(fresh, repo, PlatformTaskExecutor(gateway), gateway)
    controller.load_existing()

    assert fresh.company_name == "Globex"
    assert fresh.company_username == "globex_99"
    assert fresh.connection("instagram").url == INSTAGRAM
    assert fresh.connection("linkedin").has_account is False
    assert fresh.connection("linkedin").url == ""
    assert fresh.connection("tiktok").has_account is None


@pytest.mark.asyncio
async def test_reset_keeps_configuration(controller):
    controller.set_url("instagram", INSTAGRAM)
    await controller.advance()
    await controller.advance()

    controller.reset()

    assert controller.session.step_index == 0
    assert controller.session.results == []
    assert controller.session.connection("instagram").url == INSTAGRAM


@pytest.mark.asyncio
async def test_handshake_close_refreshes_connections(repo, session):
    gateway = (
        FakeGateway()
        .on("upload-post-manager", {"success": True, "companyUsername": "acme_1234"}, action="init_profile")
        .on("upload-post-manager", {"success": True, "access_url": "https://connect.example.com/x"},
            action="generate_jwt")
        .on("upload-post-manager", {
            "success": True,
            "connections": [
                {"platform": "TikTok", "is_connected": True, "profile_url": TIKTOK},
                {"platform": "youtube", "is_connected": True, "profile_url": "https://youtube.com/@acme"},
                {"platform": "instagram", "is_connected": False, "profile_url": INSTAGRAM},
            ],
        }, action="get_connections")
    )
    opener = SurfaceFactory()
    handshake = HandshakeManager(gateway, opener, check_interval=0.01)
    controller = WorkflowController(
        session, repo, PlatformTaskExecutor(gateway, delay=0), gateway, handshake=handshake,
    )

    hs = await controller.connect()
    assert hs.company_username == "acme_1234"
    assert repo.get_company("user-1")["company_username"] == "acme_1234"

    opener.surfaces[0].open = False
    await asyncio.sleep(0.05)

    assert session.connection("tiktok").url == TIKTOK
    assert session.connection("tiktok").has_account is True
    assert session.connection("instagram").has_account is None
    snapshot = controller.snapshot()
    assert snapshot["handshake"]["state"] == "closed"
    assert [s["completed"] for s in snapshot["steps"]] == [False, False, False, False]
    controller.close()


@pytest.mark.asyncio
async def test_word_priorities_do_not_fail_analysis(gateway, controller):
    gateway.on("instagram-scraper", {"success": True, "data": {"posts": [{}]}})
    gateway.on("instagram-intelligent-analysis", {
        "success": True,
        "actionables": [
            {"title": "Audit bio link", "priority": "low"},
            "unstructured suggestion",
            {"title": "Answer DMs", "priority": "urgent"},
            {"title": "Test carousel posts", "priority": "someday"},
        ],
    })
    controller.set_url("instagram", INSTAGRAM)
    for _ in range(3):
        await controller.advance()

    assert controller.session.step_index == 3
    assert controller.session.last_error is None
    assert [a["title"] for a in controller.session.actionables] == [
        "Answer DMs", "Test carousel posts", "Audit bio link",
    ]


@pytest.mark.asyncio
async def test_analyze_covers_only_ingested_platforms(gateway, controller):
    gateway.on("instagram-scraper", {"success": True, "data": {"posts": [{}]}})
    _analysis(gateway)
    controller.set_url("instagram", INSTAGRAM)
    await controller.advance()
    await controller.advance()

    # A connection refresh after ingest marks another account connected
    tiktok = controller.session.connection("tiktok")
    tiktok.url, tiktok.has_account = TIKTOK, True
    await controller.advance()

    analyzed = {r.platform for r in controller.session.results if r.phase == "analyze"}
    ingested = {r.platform for r in controller.session.results if r.phase == "ingest"}
    assert analyzed == ingested == {"instagram"}
    assert gateway.count("tiktok-intelligent-analysis") == 0


@pytest.mark.asyncio
async def test_configuration_locked_after_first_step(controller):
    controller.set_url("instagram", INSTAGRAM)
    await controller.advance()

    with pytest.raises(WorkflowLocked):
        controller.set_url("tiktok", TIKTOK)
    with pytest.raises(WorkflowLocked):
        controller.set_has_account("linkedin", False)
    assert not controller.session.connection("tiktok").connected

    controller.back()
    controller.set_url("tiktok", TIKTOK)
    assert controller.session.connection("tiktok").connected


def _blocking_executor(gateway, release: asyncio.Event) -> PlatformTaskExecutor:
    async def slow_ingest(gw, conn, sess):
        await release.wait()
        return PlatformOutput(items_processed=1)

    return PlatformTaskExecutor(gateway, delay=0, handlers={"instagram": {"ingest": slow_ingest}})


@pytest.mark.asyncio
async def test_back_and_reset_refused_while_running(gateway, repo, session):
    release = asyncio.Event()
    controller = WorkflowController(session, repo, _blocking_executor(gateway, release), gateway)
    controller.set_url("instagram", INSTAGRAM)
    await controller.advance()

    task = asyncio.create_task(controller.advance())
    await asyncio.sleep(0)
    with pytest.raises(WorkflowLocked):
        controller.back()
    with pytest.raises(WorkflowLocked):
        controller.reset()
    assert controller.session.step_index == 1

    release.set()
    await task
    assert controller.session.step_index == 2
    assert len(controller.session.results) == 1

    controller.reset()
    assert controller.session.step_index == 0
    assert controller.session.results == []
    assert controller.session.ingested_platforms == []


@pytest.mark.asyncio
async def test_repeated_navigation_stays_in_bounds(gateway, controller):
    gateway.on("instagram-scraper", {"success": True, "data": {"posts": [{}]}})
    _analysis(gateway)
    controller.set_url("instagram", INSTAGRAM)

    seen = []
    for _ in range(7):
        await controller.advance()
        seen.append(controller.session.step_index)
    assert seen == [1, 2, 3, 3, 3, 3, 3]

    for _ in range(6):
        seen.append(controller.back())
    assert all(0 <= index <= 3 for index in seen)
    assert controller.session.step_index == 0
