"""
tests/test_reward_handler.py — Scheduler behaviour
===================================================

Drives the RewardHandler end to end against a recording effect surface:
queue draining, conflicts, timers, force-cancels and restores.
"""

from __future__ import annotations

import asyncio

from stagecue.engine import handler as handler_module
from stagecue.engine.context import Task, TaskContext
from stagecue.engine.events import BitDonation, ChannelPoints, ChatMessage
from stagecue.engine.rewards import (
    CancelAuxParametersReward,
    CancelAvatarReward,
    CancelOverlayReward,
    CancelParametersReward,
    RewardInstance,
    SetAuxParametersReward,
    SetAvatarReward,
    SetOverlayReward,
    SetParametersReward,
)
from stagecue.engine.triggers import BitDonationTrigger, ChatMessageTrigger


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _task(command: str, *rewards: RewardInstance, name: str | None = None) -> Task:
    """A task fired by a chat message containing *command*."""
    return Task(
        id=f"task-{command}",
        name=name or command,
        trigger=ChatMessageTrigger(message_contains=command),
        rewards=tuple(rewards),
    )


def _say(command: str) -> ChatMessage:
    return ChatMessage(sender="viewer", message=command)


def _active(handler) -> list[RewardInstance]:
    return [reward for reward, _ in handler.active_rewards]


def _queued(handler) -> list[RewardInstance]:
    return [reward for reward, _ in handler.reward_queue]


async def _cancel(handler, reward: RewardInstance) -> None:
    """Cancel an active reward the way its timer would."""
    for candidate, task_ctx in handler.active_rewards:
        if candidate is reward:
            await reward.on_cancel(handler.build_context(task_ctx))
            return
    raise AssertionError("reward is not active")


async def _shutdown(handler) -> None:
    handler.stop_timers()
    # Let cancelled timer tasks unwind before the loop closes
    await asyncio.sleep(0)


# ===========================================================================
# Event ingestion
# ===========================================================================
class TestHandleEvent:
    def test_no_match_returns_zero(self, handler, surface):
        handler.set_tasks([_task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1"}))])

        matched = run_async(handler.handle_event(_say("hello")))
        assert matched == 0
        assert handler.reward_queue == []
        assert surface.calls == []

    def test_templates_are_cloned(self, handler):
        template = SetAvatarReward.from_params({"avatar_id": "avtr_1"})
        handler.set_tasks([_task("!fox", template)])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            await _shutdown(handler)

        run_async(_inner())
        (active,) = _active(handler)
        assert active is not template
        assert run_async(template.is_still_running(None)) is False

    def test_every_matching_task_enqueues(self, handler, surface):
        handler.set_tasks([
            _task("!a", SetAuxParametersReward.from_params({"params": {"/a": "1"}, "timeout_ms": 0})),
            _task("!b", SetAuxParametersReward.from_params({"params": {"/b": "1"}})),
            _task("!a", SetAuxParametersReward.from_params({"params": {"/c": "1"}})),
        ])

        matched = run_async(handler.handle_event(_say("!a")))
        assert matched == 2
        assert surface.calls == [("aux", "/a", "1"), ("aux", "/c", "1")]

    def test_failing_trigger_is_skipped(self, handler, surface, monkeypatch):
        handler.set_tasks([
            _task("!boom", SetAuxParametersReward.from_params({"params": {"/x": "1"}})),
            _task("!boom", SetAuxParametersReward.from_params({"params": {"/y": "1"}})),
        ])
        calls = {"n": 0}

        real_evaluate = handler_module.evaluate

        def flaky(trigger, event):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("broken trigger")
            return real_evaluate(trigger, event)

        monkeypatch.setattr(handler_module, "evaluate", flaky)

        assert run_async(handler.handle_event(_say("!boom"))) == 1
        assert surface.calls == [("aux", "/y", "1")]

    def test_trigger_values_travel_with_the_reward(self, handler):
        handler.set_tasks([
            Task(
                id="t-furry",
                name="Furry Mode",
                trigger=BitDonationTrigger(minimum_amount=500, message_contains="!FurryMode"),
                rewards=(SetAvatarReward.from_params({"avatar_id": "avtr_1", "timeout_ms": 300000}),),
            ),
        ])

        async def _inner():
            await handler.handle_event(BitDonation(amount=500, message="!FurryMode"))
            described = handler.describe_active()
            await _shutdown(handler)
            return described

        (info,) = run_async(_inner())
        assert info["task_id"] == "t-furry"
        assert info["task_name"] == "Furry Mode"
        assert info["source"] == "BitDonation"
        assert info["trigger_values"] == {"donation_amount": "500", "donation_message": "!FurryMode"}
        assert info["return_avatar_id"] == "avtr_base"


# ===========================================================================
# Avatar effects
# ===========================================================================
class TestAvatarScheduling:
    def test_timed_avatar_starts_and_arms_timer(self, handler, state, surface):
        handler.set_tasks([_task("!fox", SetAvatarReward.from_params(
            {"avatar_id": "avtr_1", "return_to": "default", "timeout_ms": 300000}
        ))])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            (reward,) = _active(handler)
            armed = reward.timer_armed
            await _shutdown(handler)
            return armed

        assert run_async(_inner()) is True
        assert state.current_avatar_id() == "avtr_1"
        assert surface.avatar_calls() == ["avtr_1"]

    def test_second_avatar_waits_and_inherits_return_target(self, handler, state, surface):
        handler.set_tasks([
            _task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1", "return_to": "previous"})),
            _task("!maid", SetAvatarReward.from_params({"avatar_id": "avtr_2", "return_to": "previous"})),
        ])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            await handler.handle_event(_say("!maid"))
            assert len(_queued(handler)) == 1
            (first,) = _active(handler)
            await _cancel(handler, first)

        run_async(_inner())
        # The restore to the base avatar is skipped because the maid effect is next
        assert surface.avatar_calls() == ["avtr_1", "avtr_2"]
        (second,) = _active(handler)
        assert second.params.avatar_id == "avtr_2"
        assert second._return_avatar_id == "avtr_base"
        assert handler.reward_queue == []

        run_async(_cancel(handler, second))
        assert state.current_avatar_id() == "avtr_base"
        assert handler.active_rewards == []

    def test_timer_expiry_restores_and_starts_next(self, handler, state, surface):
        handler.set_tasks([
            _task("!fox", SetAvatarReward.from_params(
                {"avatar_id": "avtr_1", "return_to": "previous", "timeout_ms": 30}
            )),
            _task("!maid", SetAvatarReward.from_params(
                {"avatar_id": "avtr_2", "return_to": "previous", "timeout_ms": 30}
            )),
        ])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            await handler.handle_event(_say("!maid"))
            await asyncio.sleep(0.3)

        run_async(_inner())
        assert surface.avatar_calls() == ["avtr_1", "avtr_2", "avtr_base"]
        assert state.current_avatar_id() == "avtr_base"
        assert handler.active_rewards == []
        assert handler.reward_queue == []

    def test_timer_handle_held_during_timed_restore(self, handler, surface):
        handler.set_tasks([_task("!fox", SetAvatarReward.from_params(
            {"avatar_id": "avtr_1", "return_to": "default", "timeout_ms": 30}
        ))])
        real = surface.change_avatar
        seen = []

        async def change_avatar(avatar_id):
            if avatar_id == "avtr_base":
                (reward,) = _active(handler)
                seen.append(reward._timer is asyncio.current_task())
            await real(avatar_id)

        surface.change_avatar = change_avatar

        async def _inner():
            await handler.handle_event(_say("!fox"))
            (reward,) = _active(handler)
            await asyncio.sleep(0.3)
            return reward

        reward = run_async(_inner())
        assert seen == [True]
        assert reward._timer is None
        assert surface.avatar_calls() == ["avtr_1", "avtr_base"]

    def test_specific_return_target(self, handler, state):
        handler.set_tasks([_task("!fox", SetAvatarReward.from_params(
            {"avatar_id": "avtr_1", "return_to": "specific", "return_avatar_id": "avtr_2"}
        ))])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            await _cancel(handler, _active(handler)[0])

        run_async(_inner())
        assert state.current_avatar_id() == "avtr_2"

    def test_cancel_avatar_reward(self, handler, state, surface):
        handler.set_tasks([
            _task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1", "timeout_ms": 300000})),
            _task("!reset", CancelAvatarReward()),
        ])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            await handler.handle_event(_say("!reset"))
            await _shutdown(handler)

        run_async(_inner())
        assert surface.avatar_calls() == ["avtr_1", "avtr_base"]
        assert handler.active_rewards == []
        assert handler.reward_queue == []

    def test_failed_avatar_change_is_dropped(self, handler, surface):
        surface.failing.add("avatar")
        handler.set_tasks([_task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1"}))])

        run_async(handler.handle_event(_say("!fox")))
        assert surface.avatar_calls() == ["avtr_1"]
        assert handler.active_rewards == []
        assert handler.reward_queue == []


# ===========================================================================
# Avatar parameter effects
# ===========================================================================
class TestParameterScheduling:
    def test_unchannelled_rewards_run_together(self, handler):
        handler.set_tasks([
            _task("!ears", SetParametersReward.from_params({"params": {"/ears": "1"}})),
            _task("!tail", SetParametersReward.from_params({"params": {"/tail": "1"}})),
        ])

        async def _inner():
            await handler.handle_event(_say("!ears"))
            await handler.handle_event(_say("!tail"))

        run_async(_inner())
        assert len(handler.active_rewards) == 2

    def test_channel_blocks_second_reward(self, handler, state):
        handler.set_tasks([
            _task("!red", SetParametersReward.from_params({"channel_id": "hue", "params": {"/hue": "1"}})),
            _task("!blue", SetParametersReward.from_params({"channel_id": "hue", "params": {"/hue": "2"}})),
            _task("!ears", SetParametersReward.from_params({"channel_id": "ears", "params": {"/ears": "1"}})),
        ])

        async def _inner():
            await handler.handle_event(_say("!red"))
            await handler.handle_event(_say("!blue"))
            await handler.handle_event(_say("!ears"))

        run_async(_inner())
        assert [r.params.channel_id for r in _active(handler)] == ["hue", "ears"]
        assert [r.params.channel_id for r in _queued(handler)] == ["hue"]
        assert state.parameter_text("/hue") == "1"

    def test_waits_for_matching_avatar(self, handler, state, surface):
        handler.set_tasks([
            _task("!ears", SetParametersReward.from_params({"for_avatar": "avtr_1", "params": {"/ears": "1"}})),
            _task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1"})),
        ])

        async def _inner():
            await handler.handle_event(_say("!ears"))
            assert len(handler.reward_queue) == 1
            await handler.handle_event(_say("!fox"))

        run_async(_inner())
        assert surface.calls == [("avatar", "avtr_1"), ("param", "/ears", "1")]
        assert handler.reward_queue == []

    def test_restore_previous_value(self, handler, state):
        state.record("/ears", 0.0)
        handler.set_tasks([_task("!ears", SetParametersReward.from_params({"params": {"/ears": "1"}}))])

        async def _inner():
            await handler.handle_event(_say("!ears"))
            (reward,) = _active(handler)
            assert reward._restore_values == {"/ears": "0"}
            await _cancel(handler, reward)

        run_async(_inner())
        assert state.parameter_text("/ears") == "0"

    def test_unknown_previous_value_is_not_restored(self, handler, surface):
        handler.set_tasks([_task("!ears", SetParametersReward.from_params({"params": {"/ears": "1"}}))])

        async def _inner():
            await handler.handle_event(_say("!ears"))
            await _cancel(handler, _active(handler)[0])

        run_async(_inner())
        assert surface.calls == [("param", "/ears", "1")]

    def test_specific_return_params(self, handler, state):
        state.record("/ears", "0")
        handler.set_tasks([_task("!ears", SetParametersReward.from_params({
            "params": {"/ears": "1"},
            "return_to": "specific",
            "return_params": {"/ears": "5"},
        }))])

        async def _inner():
            await handler.handle_event(_say("!ears"))
            await _cancel(handler, _active(handler)[0])

        run_async(_inner())
        assert state.parameter_text("/ears") == "5"

    def test_queued_successor_skips_restore_and_catches_original(self, handler, state, surface):
        state.record("/p", "0")
        handler.set_tasks([
            _task("!one", SetParametersReward.from_params({"channel_id": "c", "params": {"/p": "1"}})),
            _task("!two", SetParametersReward.from_params({"channel_id": "c", "params": {"/p": "2"}})),
        ])

        async def _inner():
            await handler.handle_event(_say("!one"))
            await handler.handle_event(_say("!two"))
            await _cancel(handler, _active(handler)[0])
            (second,) = _active(handler)
            assert second.params.params == {"/p": "2"}
            assert second._restore_values == {"/p": "0"}
            await _cancel(handler, second)

        run_async(_inner())
        # No flicker back to "0" between the two effects
        assert [c for c in surface.calls if c[0] == "param"] == [
            ("param", "/p", "1"),
            ("param", "/p", "2"),
            ("param", "/p", "0"),
        ]

    def test_cancel_parameters_by_channel(self, handler):
        handler.set_tasks([
            _task("!red", SetParametersReward.from_params({"channel_id": "hue", "params": {"/hue": "1"}})),
            _task("!ears", SetParametersReward.from_params({"channel_id": "ears", "params": {"/ears": "1"}})),
            _task("!nohue", CancelParametersReward.from_params({"channel_id": "hue"})),
            _task("!none", CancelParametersReward()),
        ])

        async def _inner():
            await handler.handle_event(_say("!red"))
            await handler.handle_event(_say("!ears"))
            await handler.handle_event(_say("!nohue"))
            assert [r.params.channel_id for r in _active(handler)] == ["ears"]
            await handler.handle_event(_say("!none"))

        run_async(_inner())
        assert handler.active_rewards == []

    def test_partial_failure_still_starts(self, handler, surface):
        handler.set_tasks([_task("!x", SetParametersReward.from_params({"params": {"/a": "1", "/b": "1"}}))])

        real = surface.set_parameter

        async def set_parameter(address, value):
            if address == "/a":
                raise RuntimeError("socket closed")
            await real(address, value)

        surface.set_parameter = set_parameter

        run_async(handler.handle_event(_say("!x")))
        assert len(handler.active_rewards) == 1

    def test_total_failure_is_dropped(self, handler, surface):
        surface.failing.add("param")
        handler.set_tasks([_task("!x", SetParametersReward.from_params({"params": {"/a": "1"}}))])

        run_async(handler.handle_event(_say("!x")))
        assert handler.active_rewards == []
        assert handler.reward_queue == []

    def test_failed_restore_still_promotes_next(self, handler, surface):
        handler.set_tasks([
            _task("!ears", SetParametersReward.from_params({
                "channel_id": "ears", "params": {"/ears": "1"},
                "return_to": "specific", "return_params": {"/ears": "0"}, "timeout_ms": 30,
            })),
            _task("!tail", SetParametersReward.from_params({"channel_id": "ears", "params": {"/tail": "1"}})),
        ])
        real = surface.set_parameter

        async def set_parameter(address, value):
            if address == "/ears" and value == "0":
                raise RuntimeError("socket closed")
            await real(address, value)

        async def _inner():
            await handler.handle_event(_say("!ears"))
            await handler.handle_event(_say("!tail"))
            (first,) = _active(handler)
            surface.set_parameter = set_parameter
            await asyncio.sleep(0.3)
            return first

        first = run_async(_inner())
        assert first not in _active(handler)
        assert [r.params.params for r in _active(handler)] == [{"/tail": "1"}]
        assert handler.reward_queue == []
        assert handler.draining is False
        assert surface.calls[-1] == ("param", "/tail", "1")


# ===========================================================================
# Auxiliary channel effects
# ===========================================================================
class TestAuxScheduling:
    def test_set_and_restore(self, handler, surface):
        handler.set_tasks([
            _task("!blink", SetAuxParametersReward.from_params({
                "channel_id": "face", "params": {"/blink": "1"}, "return_params": {"/blink": "0"},
            })),
            _task("!wink", SetAuxParametersReward.from_params({
                "channel_id": "face", "params": {"/wink": "1"}, "return_params": {"/wink": "0"},
            })),
            _task("!stop", CancelAuxParametersReward.from_params({"channel_id": "face"})),
        ])

        async def _inner():
            await handler.handle_event(_say("!blink"))
            await handler.handle_event(_say("!wink"))
            assert len(handler.reward_queue) == 1
            await handler.handle_event(_say("!stop"))

        run_async(_inner())
        assert surface.calls == [
            ("aux", "/blink", "1"),
            ("aux", "/blink", "0"),
            ("aux", "/wink", "1"),
        ]
        assert len(handler.active_rewards) == 1


# ===========================================================================
# Overlay effects
# ===========================================================================
class TestOverlayScheduling:
    def test_hide_then_cancel_restores_baseline(self, handler, state):
        state.set_overlay_visible(1, True)
        handler.set_tasks([
            _task("!hide", SetOverlayReward.from_params({"overlay_id": 1, "show": False})),
            _task("!reset", CancelOverlayReward.from_params({"overlay_id": 1})),
        ])

        async def _inner():
            await handler.handle_event(_say("!hide"))
            assert state.overlay_visibility[1] is False
            await handler.handle_event(_say("!reset"))

        run_async(_inner())
        assert state.overlay_visibility[1] is True
        assert handler.active_rewards == []

    def test_missing_overlay_restores_hidden(self, handler, state):
        handler.set_tasks([_task("!show", SetOverlayReward.from_params({"overlay_id": 7, "show": True}))])

        async def _inner():
            await handler.handle_event(_say("!show"))
            assert state.overlay_visibility[7] is True
            await _cancel(handler, _active(handler)[0])

        run_async(_inner())
        assert state.overlay_visibility[7] is False

    def test_cancel_all_overlays(self, handler, state):
        handler.set_tasks([
            _task("!a", SetOverlayReward.from_params({"overlay_id": 1, "show": False})),
            _task("!b", SetOverlayReward.from_params({"overlay_id": 2, "show": True})),
            _task("!reset", CancelOverlayReward()),
        ])

        async def _inner():
            await handler.handle_event(_say("!a"))
            await handler.handle_event(_say("!b"))
            assert len(handler.active_rewards) == 2
            await handler.handle_event(_say("!reset"))

        run_async(_inner())
        assert handler.active_rewards == []
        assert state.overlay_visibility == {1: True, 2: False}

    def test_same_overlay_queues(self, handler, state):
        handler.set_tasks([
            _task("!hide", SetOverlayReward.from_params({"overlay_id": 2, "show": False})),
            _task("!show", SetOverlayReward.from_params({"overlay_id": 2, "show": True})),
            _task("!reset", CancelOverlayReward.from_params({"overlay_id": 2})),
        ])

        async def _inner():
            await handler.handle_event(_say("!hide"))
            await handler.handle_event(_say("!show"))
            assert len(handler.reward_queue) == 1
            await handler.handle_event(_say("!reset"))

        run_async(_inner())
        assert state.overlay_visibility[2] is True
        (running,) = _active(handler)
        assert running.params.show is True


# ===========================================================================
# Queue mechanics
# ===========================================================================
class TestQueueMechanics:
    def test_fifo_within_a_conflict_scope(self, handler, state, surface):
        handler.set_tasks([
            _task("!one", SetAvatarReward.from_params({"avatar_id": "avtr_1", "timeout_ms": 20})),
            _task("!two", SetAvatarReward.from_params({"avatar_id": "avtr_2", "timeout_ms": 20})),
            _task("!three", SetAvatarReward.from_params({"avatar_id": "avtr_1", "timeout_ms": 20})),
        ])

        async def _inner():
            await handler.handle_event(_say("!one"))
            await handler.handle_event(_say("!two"))
            await handler.handle_event(_say("!three"))
            await asyncio.sleep(0.4)

        run_async(_inner())
        started = surface.avatar_calls()
        assert started[0] == "avtr_1"
        assert [c for c in started if c != "avtr_base"] == ["avtr_1", "avtr_2", "avtr_1"]
        assert handler.active_rewards == []
        assert handler.reward_queue == []

    def test_blocked_entry_does_not_block_others(self, handler):
        handler.set_tasks([
            _task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1"})),
            _task("!maid", SetAvatarReward.from_params({"avatar_id": "avtr_2"})),
            _task("!show", SetOverlayReward.from_params({"overlay_id": 2})),
        ])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            await handler.handle_event(_say("!maid"))
            await handler.handle_event(_say("!show"))

        run_async(_inner())
        assert [type(r) for r in _active(handler)] == [SetAvatarReward, SetOverlayReward]
        assert [r.params.avatar_id for r in _queued(handler)] == ["avtr_2"]

    def test_one_task_several_rewards(self, handler, state, surface):
        handler.set_tasks([_task(
            "!combo",
            SetAvatarReward.from_params({"avatar_id": "avtr_1"}),
            SetParametersReward.from_params({"for_avatar": "avtr_1", "params": {"/ears": "1"}}),
            SetOverlayReward.from_params({"overlay_id": 2}),
        )])

        run_async(handler.handle_event(_say("!combo")))
        assert surface.calls == [("avatar", "avtr_1"), ("param", "/ears", "1")]
        assert len(handler.active_rewards) == 3
        assert handler.reward_queue == []

    def test_readiness_error_drops_entry(self, handler, surface):
        class Broken(SetAuxParametersReward):
            async def ready_to_start(self, ctx):
                raise RuntimeError("boom")

        handler.set_tasks([
            _task("!x", Broken.from_params({"params": {"/a": "1"}}),
                  SetAuxParametersReward.from_params({"params": {"/b": "1"}})),
        ])

        run_async(handler.handle_event(_say("!x")))
        assert surface.calls == [("aux", "/b", "1")]
        assert handler.reward_queue == []

    def test_start_error_drops_entry(self, handler):
        class Broken(SetAuxParametersReward):
            async def on_start(self, ctx):
                raise RuntimeError("boom")

        handler.set_tasks([_task("!x", Broken.from_params({"params": {"/a": "1"}}))])

        run_async(handler.handle_event(_say("!x")))
        assert handler.active_rewards == []
        assert handler.reward_queue == []

    def test_cancelled_rewards_are_swept_from_active(self, handler):
        handler.set_tasks([_task("!a", SetAuxParametersReward.from_params({"params": {"/a": "1"}}))])

        async def _inner():
            await handler.handle_event(_say("!a"))
            (reward,) = _active(handler)
            # Stop it behind the handler's back; the next drain sweeps it
            reward._running = False
            await handler.process_queue()

        run_async(_inner())
        assert handler.active_rewards == []

    def test_reentrant_drain_is_deferred(self, handler, surface):
        handler.set_tasks([
            _task("!slow", SetAuxParametersReward.from_params({"params": {"/slow": "1"}})),
            _task("!fast", SetAuxParametersReward.from_params({"params": {"/fast": "1"}})),
        ])
        real = surface.set_aux_parameter

        async def _inner():
            release = asyncio.Event()

            async def slow_aux(address, value):
                if address == "/slow":
                    await release.wait()
                await real(address, value)

            surface.set_aux_parameter = slow_aux
            first = asyncio.ensure_future(handler.handle_event(_say("!slow")))
            await asyncio.sleep(0)
            assert handler.draining is True

            # Arrives mid-drain: enqueued, then picked up by the running drain
            await handler.handle_event(_say("!fast"))
            assert [r.params.params for r in _queued(handler)] == [{"/slow": "1"}, {"/fast": "1"}]
            assert surface.calls == []

            release.set()
            await first
            assert handler.draining is False

        run_async(_inner())
        assert [c[1] for c in surface.calls] == ["/slow", "/fast"]
        assert len(handler.active_rewards) == 2
        assert handler.reward_queue == []

    def test_stop_timers_restores_nothing(self, handler, surface):
        handler.set_tasks([_task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1", "timeout_ms": 50}))])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            handler.stop_timers()
            await asyncio.sleep(0.15)

        run_async(_inner())
        assert surface.avatar_calls() == ["avtr_1"]
        assert not _active(handler)[0].timer_armed


# ===========================================================================
# Globals & diagnostics
# ===========================================================================
class TestDiagnostics:
    def test_global_values_reach_contexts(self, handler):
        handler.set_global_value("mode", "party")
        task_ctx = TaskContext(kv={"k": "v"}, source=ChannelPoints(reward_id="r"))
        ctx = handler.build_context(task_ctx)
        assert ctx.global_values == {"mode": "party"}
        assert ctx.trigger_values == {"k": "v"}
        assert ctx.task is task_ctx
        assert ctx.handler is handler

    def test_describe_queue(self, handler):
        handler.set_tasks([
            _task("!fox", SetAvatarReward.from_params({"avatar_id": "avtr_1"}), name="Fox"),
            _task("!maid", SetAvatarReward.from_params({"avatar_id": "avtr_2"}), name="Maid"),
        ])

        async def _inner():
            await handler.handle_event(_say("!fox"))
            await handler.handle_event(_say("!maid"))

        run_async(_inner())
        (queued,) = handler.describe_queue()
        assert queued["task_name"] == "Maid"
        assert queued["kind"] == "set-avatar-reward"
        assert queued["conflict_key"] == "avatar"
        assert queued["source"] == "Message"
        assert queued["trigger_values"] == {"message_sender": "viewer", "message": "!maid"}
