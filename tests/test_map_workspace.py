"""Tests for treasuremap/services/map_workspace.py."""
from datetime import datetime, timezone

import pytest

from conftest import BRUSSELS, InMemoryGateway, offset
from treasuremap.domain.geometry import area, circle_to_polygon, to_shapely
from treasuremap.domain.registry import ShapeNotFoundError
from treasuremap.domain.shapes import Circle, Marker
from treasuremap.domain.sharing import AcceptedShareView, SharedCircleView
from treasuremap.services.map_persistence import LoadState, MapPersistence
from treasuremap.services.map_workspace import MapWorkspace
from treasuremap.services.persistence_codec import PersistenceError, encode

USER_ID = 1
NORTH_150 = offset(BRUSSELS, north_m=150)


@pytest.fixture
def persistence(gateway, scheduler):
    return MapPersistence(gateway, USER_ID, debounce_seconds=1.0, scheduler=scheduler)


@pytest.fixture
def workspace(renderer, persistence):
    workspace = MapWorkspace(renderer=renderer, persistence=persistence)
    workspace.load()
    return workspace


def _spread(index):
    return offset(BRUSSELS, east_m=1000 * index)


def _disc(center, radius=100.0):
    return to_shapely([[circle_to_polygon(center, radius)]])


# ============================================================
# Reconciliation pipeline
# ============================================================

class TestPipeline:
    def test_single_circle_is_drawn(self, workspace, renderer):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)

        assert workspace.render_layer.drawn_ids == [shape_id]
        assert len(renderer.of_kind("circle")) == 1
        # inside fill and solution highlight
        assert len(renderer.of_kind("polygon")) == 2

    def test_overlapping_circles_merge_on_add(self, workspace, renderer):
        a = workspace.add_circle(BRUSSELS, 100, True)
        b = workspace.add_circle(NORTH_150, 100, True)

        region_id = workspace.last_report.merges[0].region_id
        assert workspace.registry.ids() == [region_id]
        assert not workspace.registry.contains(a) and not workspace.registry.contains(b)
        assert workspace.render_layer.drawn_ids == [region_id]
        assert renderer.of_kind("circle") == []
        assert len(workspace.inside_fill.value) == 1

    def test_reclassifying_can_merge(self, workspace):
        workspace.add_circle(BRUSSELS, 100, True)
        b = workspace.add_circle(NORTH_150, 100, False)
        assert len(workspace.registry) == 2

        workspace.set_inside(b, True)

        assert len(workspace.registry) == 1
        assert workspace.outside_fill.value == []

    def test_solution_tracks_inside_and_outside(self, workspace):
        workspace.add_circle(BRUSSELS, 100, True)
        full = area(workspace.solution.value)
        workspace.add_circle(offset(BRUSSELS, east_m=100), 100, False)

        assert workspace.solution.ok
        assert 0 < area(workspace.solution.value) < full

    def test_solution_of_merged_inside_circles_is_their_overlap(self, workspace):
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(NORTH_150, 100, True)
        assert len(workspace.registry) == 1

        lens = _disc(BRUSSELS).intersection(_disc(NORTH_150)).area
        assert area(workspace.solution.value) == pytest.approx(lens, rel=1e-6)
        assert area(workspace.solution.value) < area(workspace.inside_fill.value) / 2

    def test_solution_narrows_as_inside_circles_chain(self, workspace):
        north_100 = offset(BRUSSELS, north_m=100)
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(north_100, 100, True)
        workspace.add_circle(offset(BRUSSELS, north_m=50, east_m=80), 100, True)
        assert len(workspace.registry) == 1

        expected = (
            _disc(BRUSSELS)
            .intersection(_disc(north_100))
            .intersection(_disc(offset(BRUSSELS, north_m=50, east_m=80)))
            .area
        )
        assert area(workspace.solution.value) == pytest.approx(expected, rel=1e-6)

    def test_hidden_shape_leaves_fill_but_not_solution(self, workspace, renderer):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)

        assert workspace.toggle_visibility(shape_id) is False

        assert workspace.render_layer.drawn_ids == []
        assert workspace.inside_fill.value == []
        assert workspace.solution.value != []
        assert renderer.of_kind("circle") == []

    def test_works_without_renderer_or_persistence(self):
        workspace = MapWorkspace()
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(NORTH_150, 100, True)
        assert len(workspace.registry) == 1
        assert workspace.render_layer is None
        assert workspace.flush() is None
        with pytest.raises(PersistenceError):
            workspace.load()


# ============================================================
# Counters
# ============================================================

class TestCounters:
    def test_reward_after_threshold(self, workspace):
        for index in range(7):
            workspace.add_circle(_spread(index), 100, True)
        assert workspace.earned_reward is False

        workspace.add_circle(_spread(7), 100, True)

        assert workspace.circle_count == 8
        assert workspace.earned_reward is True

    def test_merges_still_count_circles(self, workspace):
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(NORTH_150, 100, True)
        assert workspace.circle_count == 2

    def test_delete_decrements(self, workspace):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(_spread(1), 100, True)
        workspace.delete_shape(shape_id)
        assert workspace.circle_count == 1

    def test_counter_never_negative(self, workspace):
        shape_id = workspace.registry.add_circle(BRUSSELS, 100, True)
        workspace.delete_shape(shape_id)
        assert workspace.circle_count == 0

    def test_reward_survives_deletes(self):
        workspace = MapWorkspace(reward_threshold=2)
        first = workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(_spread(1), 100, True)
        workspace.delete_shape(first)
        assert workspace.earned_reward is True

    @pytest.mark.parametrize("center, radius", [
        (BRUSSELS, 0),
        (BRUSSELS, -5),
        (BRUSSELS, float("nan")),
        ((95.0, 4.35), 100),
    ])
    def test_invalid_circle_is_not_counted(self, workspace, scheduler, center, radius):
        with pytest.raises(ValueError):
            workspace.add_circle(center, radius, True)

        assert workspace.circle_count == 0
        assert len(workspace.registry) == 0
        assert scheduler.timers == []

    def test_delete_unknown(self, workspace):
        with pytest.raises(ShapeNotFoundError):
            workspace.delete_shape(99)


# ============================================================
# Selection and context menu
# ============================================================

class TestInteraction:
    def test_click_selects(self, workspace, renderer):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)
        handle = workspace.render_layer.handles_for(shape_id)[0]

        renderer.fire(handle, "click")

        assert workspace.selected == shape_id

    def test_context_menu_goes_stale_after_merge(self, workspace, renderer):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)
        renderer.fire(workspace.render_layer.handles_for(shape_id)[0], "contextmenu")
        assert workspace.context_menu_target == shape_id

        workspace.add_circle(NORTH_150, 100, True)

        assert workspace.context_menu_target is None
        assert workspace.selected is None

    def test_delete_clears_selection(self, workspace):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)
        workspace.select(shape_id)
        workspace.open_context_menu(shape_id)
        workspace.delete_shape(shape_id)
        assert workspace.selected is None
        assert workspace.context_menu_target is None

    def test_select_unknown(self, workspace):
        with pytest.raises(ShapeNotFoundError):
            workspace.select(12)

    def test_close_context_menu(self, workspace):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)
        workspace.open_context_menu(shape_id)
        workspace.close_context_menu()
        assert workspace.context_menu_target is None

    def test_view_for_circle(self, workspace):
        shape_id = workspace.add_circle(BRUSSELS, 100, True)
        view = workspace.view_for_shape(shape_id)
        assert view.center == BRUSSELS
        assert view.zoom == 18
        assert view.bounds is None

    def test_view_for_region(self, workspace):
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(NORTH_150, 100, True)
        region_id = workspace.registry.ids()[0]

        view = workspace.view_for_shape(region_id)

        (south, _), (north, _) = view.bounds
        assert south < BRUSSELS[0] < NORTH_150[0] < north
        assert view.center[0] == pytest.approx((south + north) / 2)
        assert view.zoom is None


# ============================================================
# Markers and clearing
# ============================================================

class TestMarkers:
    def test_markers_share_the_id_space(self, workspace):
        circle_id = workspace.add_circle(BRUSSELS, 100, True)
        marker_id = workspace.add_marker(50.9, 4.4)
        assert marker_id == circle_id + 1
        assert workspace.add_circle(_spread(1), 100, True) == marker_id + 1
        assert workspace.markers == [Marker(id=marker_id, lat=50.9, lng=4.4)]

    def test_remove_marker(self, workspace):
        marker_id = workspace.add_marker(50.9, 4.4)
        workspace.remove_marker(marker_id)
        assert workspace.markers == []
        with pytest.raises(ShapeNotFoundError):
            workspace.remove_marker(marker_id)

    def test_clear(self, workspace, renderer):
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_marker(50.9, 4.4)

        workspace.clear()

        assert len(workspace.registry) == 0
        assert workspace.markers == []
        assert workspace.circle_count == 0
        assert renderer.live == {}
        assert workspace.add_circle(BRUSSELS, 100, True) == 3


# ============================================================
# Persistence
# ============================================================

class TestPersistence:
    def test_mutation_schedules_save(self, workspace, scheduler, gateway):
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(_spread(1), 100, False)
        assert len(scheduler.active) == 1

        scheduler.run_pending()

        saved = gateway.saves[-1]
        assert len(saved["features"]) == 2
        assert saved["metadata"] == {"circleCount": 2, "earnedReward": False, "revision": 1}

    def test_no_save_before_load(self, renderer, persistence, scheduler):
        workspace = MapWorkspace(renderer=renderer, persistence=persistence)
        workspace.add_circle(BRUSSELS, 100, True)
        assert scheduler.timers == []
        assert persistence.state is LoadState.UNINITIALIZED

    def test_load_restores_everything(self, renderer, scheduler):
        circle = Circle(id=4, center=BRUSSELS, radius_meters=100, inside=True)
        marker = Marker(id=6, lat=50.9, lng=4.4)
        gateway = InMemoryGateway({USER_ID: encode([circle], [], [marker], 3, True, revision=2)})
        workspace = MapWorkspace(renderer=renderer, persistence=MapPersistence(gateway, USER_ID, scheduler=scheduler))

        workspace.load()

        assert workspace.registry.ids() == [4]
        assert workspace.markers == [marker]
        assert workspace.circle_count == 3
        assert workspace.earned_reward is True
        assert workspace.render_layer.drawn_ids == [4]
        assert scheduler.timers == []
        assert workspace.add_circle(_spread(1), 50, False) == 7

    def test_load_failure_keeps_saving_disabled(self, renderer, scheduler):
        gateway = InMemoryGateway()
        gateway.fail_load = True
        workspace = MapWorkspace(renderer=renderer, persistence=MapPersistence(gateway, USER_ID, scheduler=scheduler))

        with pytest.raises(PersistenceError):
            workspace.load()
        workspace.add_circle(BRUSSELS, 100, True)

        assert scheduler.timers == []

    def test_flush_and_reload_round_trip(self, workspace, gateway, renderer, scheduler):
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.add_circle(NORTH_150, 100, True)
        workspace.add_marker(50.9, 4.4)
        assert workspace.flush() == 1

        reloaded = MapWorkspace(persistence=MapPersistence(gateway, USER_ID, scheduler=scheduler))
        reloaded.load()

        assert reloaded.registry.entries() == workspace.registry.entries()
        assert len(reloaded.registry.all()[1][0].sources) == 2
        assert area(reloaded.solution.value) == pytest.approx(area(workspace.solution.value))
        assert reloaded.markers == workspace.markers
        assert reloaded.registry.next_id == workspace.registry.next_id
        assert reloaded.last_report.changed is False

    def test_close(self, workspace, renderer, scheduler):
        workspace.add_circle(BRUSSELS, 100, True)
        workspace.close()

        assert renderer.live == {}
        assert scheduler.active == []
        workspace.registry.add_circle(_spread(1), 100, True)
        assert renderer.live == {}


# ============================================================
# Accepted shares
# ============================================================

class TestAcceptedShares:
    def _share(self, share_id, visible=True):
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        circle = SharedCircleView(
            id=1, latitude=BRUSSELS[0], longitude=BRUSSELS[1], radius=200,
            is_inside=True, owner_username="alice", created_at=created,
        )
        return AcceptedShareView(share_id=share_id, owner_username="alice", circles=(circle,), visible=visible)

    def test_shares_render_separately(self, workspace, renderer):
        workspace.show_accepted_shares([self._share("abc"), self._share("hidden", visible=False)])

        circles = [renderer.live[h] for h in renderer.of_kind("circle")]
        assert len(circles) == 1
        assert circles[0]["style"]["dashArray"] == "10, 10"
        assert circles[0]["style"]["tooltip"] == "Shared by alice"
        assert len(workspace.registry) == 0

    def test_shares_do_not_touch_solution(self, workspace):
        workspace.add_circle(offset(BRUSSELS, east_m=1000), 100, True)
        before = workspace.solution.value
        workspace.show_accepted_shares([self._share("abc")])
        workspace.add_marker(50.0, 4.0)
        assert workspace.solution.value == before
        assert to_shapely(before).area == pytest.approx(
            to_shapely([[circle_to_polygon(offset(BRUSSELS, east_m=1000), 100)]]).area
        )
