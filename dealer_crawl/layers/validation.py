"""
Validation state machine for crawl targets.

Owns the pending -> passed / failed lifecycle and the automatic enable and
disable transitions. Two consecutive successes enable a target; three
consecutive failures disable it.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from dealer_crawl.models.target import CrawlTarget, ValidationStatus
from dealer_crawl.utils.logger import LayerLogger

SUCCESSES_TO_ENABLE = 2
FAILURES_TO_DISABLE = 3


@dataclass
class ValidationTransition:
    """Result of applying one run to a target's lifecycle."""
    target: CrawlTarget
    previous_status: ValidationStatus
    new_status: ValidationStatus
    run_failed: bool
    promoted: bool = False
    auto_disabled: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


class ValidationStateMachine:
    """
    Applies run outcomes to a target's validation fields.

    A run fails if it errored or found no vehicles. The failure and success
    streak counters are never both positive. An operator's manual disable
    (operator_disabled) is never overridden by auto-enable, and an already
    disabled target is not disabled again.
    """

    def __init__(
        self,
        successes_to_enable: int = SUCCESSES_TO_ENABLE,
        failures_to_disable: int = FAILURES_TO_DISABLE,
    ):
        self.successes_to_enable = successes_to_enable
        self.failures_to_disable = failures_to_disable
        self.logger = LayerLogger("validation")

    def apply(
        self,
        target: CrawlTarget,
        vehicles_found: int,
        had_error: bool,
        fail_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ValidationTransition:
        """
        Apply one run's outcome.

        The passed target is not mutated; the updated copy is returned on
        the transition.
        """
        now = now or datetime.now(timezone.utc)
        updated = target.model_copy()
        previous = updated.validation_status

        updated.validation_run_count += 1
        updated.last_vehicle_count = vehicles_found
        updated.last_crawl_at = now

        run_failed = had_error or vehicles_found == 0
        if run_failed:
            transition = self._on_failure(updated, previous, fail_reason, vehicles_found, now)
        else:
            transition = self._on_success(updated, previous)

        self.logger.log_transition(
            target=updated.slug,
            from_status=previous.value,
            to_status=updated.validation_status.value,
            run_failed=run_failed,
            consecutive_failures=updated.consecutive_failures,
            consecutive_successes=updated.consecutive_successes,
            enabled=updated.enabled,
            promoted=transition.promoted,
            auto_disabled=transition.auto_disabled,
        )

        return transition

    def _on_failure(
        self,
        target: CrawlTarget,
        previous: ValidationStatus,
        fail_reason: Optional[str],
        vehicles_found: int,
        now: datetime,
    ) -> ValidationTransition:
        target.consecutive_failures += 1
        target.consecutive_successes = 0
        target.validation_status = ValidationStatus.FAILED
        target.last_fail_reason = fail_reason or ("zero_vehicles" if vehicles_found == 0 else "error")

        auto_disabled = False
        if target.consecutive_failures >= self.failures_to_disable and target.enabled:
            target.enabled = False
            target.disabled_reason = (
                f"auto_disabled: {target.consecutive_failures} consecutive failures "
                f"(last: {target.last_fail_reason})"
            )
            target.disabled_at = now
            auto_disabled = True
            self.logger.log_decision(
                decision="auto_disable",
                reason=target.disabled_reason,
                target=target.slug,
            )

        return ValidationTransition(
            target=target,
            previous_status=previous,
            new_status=target.validation_status,
            run_failed=True,
            auto_disabled=auto_disabled,
        )

    def _on_success(self, target: CrawlTarget, previous: ValidationStatus) -> ValidationTransition:
        target.consecutive_failures = 0
        target.consecutive_successes += 1

        promoted = False
        if (
            target.consecutive_successes >= self.successes_to_enable
            and target.consecutive_failures == 0
            and target.validation_status != ValidationStatus.PASSED
        ):
            target.validation_status = ValidationStatus.PASSED
            promoted = True
            if target.operator_disabled:
                self.logger.log_decision(
                    decision="skip_auto_enable",
                    reason="target was disabled by an operator",
                    target=target.slug,
                )
            else:
                target.enabled = True
                target.disabled_reason = None
                target.disabled_at = None
        elif target.consecutive_successes == 1 and target.validation_status != ValidationStatus.PASSED:
            # Still accumulating evidence
            target.validation_status = ValidationStatus.PENDING

        return ValidationTransition(
            target=target,
            previous_status=previous,
            new_status=target.validation_status,
            run_failed=False,
            promoted=promoted,
        )
