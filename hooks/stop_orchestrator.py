"""
Stop Orchestrator

Unified Stop handler. Gates run strictly in order and the first block wins:

1. Continuation loop (RALPH_ENABLED=true)
2. Verification pipeline (unless PIPELINE_SKIP=true)
3. Advisory pass (warnings only, never blocks)

When nothing blocks, the envelope is echoed unchanged with exit 0.
"""

import logging

from hooks.advisory import advise
from hooks.config import HookConfig
from hooks.envelope import HookEvent, HookResult
from hooks.pipeline import VerificationPipeline
from ralph_loop.loop import ContinuationLoop

logger = logging.getLogger(__name__)


def handle_stop(event: HookEvent, config: HookConfig) -> HookResult:
    if config.ralph_enabled:
        decision = ContinuationLoop(config).evaluate(event)
        if decision.blocked:
            return HookResult.block(decision)
        logger.debug(f"Continuation loop allowed: {decision.reason}")

    if config.pipeline_enabled:
        decision = VerificationPipeline(config).evaluate(event)
        if decision.blocked:
            return HookResult.block(decision)
        logger.debug(f"Verification pipeline allowed: {decision.reason}")

    advise(event, config)
    return HookResult.allow(event.data)


def handle_loop(event: HookEvent, config: HookConfig) -> HookResult:
    """Continuation loop as a standalone Stop hook."""
    decision = ContinuationLoop(config).evaluate(event)
    return HookResult.from_decision(decision, event.data)


def handle_verify(event: HookEvent, config: HookConfig) -> HookResult:
    """Verification pipeline as a standalone Stop hook."""
    if not config.pipeline_enabled:
        return HookResult.allow(event.data)
    decision = VerificationPipeline(config).evaluate(event)
    return HookResult.from_decision(decision, event.data)
