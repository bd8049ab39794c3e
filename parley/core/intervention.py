########## Intervention Rules ##########
# Priority-ordered, first-match rules letting one NPC talk over the others.

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from . import config
from .logs import log_run_event
from .types import (
    ContextSnapshot,
    InterventionMessages,
    InterventionRecord,
    InterventionResult,
    InterventionRule,
    PotentialIntervention,
    RuleHistory,
    utc_now,
)

Clock = Callable[[], datetime]
MessageSink = Callable[[str, str], None]

DISPLAY_NAMES = {
    "mr wendell": "Mr Wendell",
    "al": "Al",
    "ayla": "Ayla",
    "morthos": "Morthos",
    "polly": "Polly",
    "dominic": "Dominic",
    "albie": "Albie",
}


########## Predicate Helpers ##########


def has_flag(context: ContextSnapshot, name: str) -> bool:
    return bool(context.flags.get(name))


def has_trait(context: ContextSnapshot, name: str) -> bool:
    return name in context.player.traits


def has_item(context: ContextSnapshot, name: str) -> bool:
    return name in context.player.inventory or name in context.inventory


def in_room(context: ContextSnapshot, fragment: str) -> bool:
    return fragment.lower() in context.room_id.lower()


def has_npc(context: ContextSnapshot, name: str) -> bool:
    wanted = name.lower().strip()
    return any(npc.lower().strip() == wanted for npc in context.npcs_present)


def player_reputation(context: ContextSnapshot) -> float:
    """Highest standing across the relationship map and the legacy reputation map."""

    values = list(context.player.npc_relationships.values()) + list(context.player.reputation.values())
    if not values:
        return 0.0
    return max(values)


def display_name(npc: str) -> str:
    lowered = npc.lower().strip()
    if lowered in DISPLAY_NAMES:
        return DISPLAY_NAMES[lowered]
    return npc[:1].upper() + npc[1:]


########## Default Rules ##########


def _albie_peacekeeper(context: ContextSnapshot) -> bool:
    return (
        has_flag(context, "tension_rising")
        or has_flag(context, "argument_detected")
        or has_flag(context, "violence_threatened")
        or len(context.npcs_present) >= 3
    )


def _polly_dominic_protection(context: ContextSnapshot) -> bool:
    if not has_npc(context, "dominic"):
        return False
    return any(
        has_flag(context, flag)
        for flag in (
            "dominic_threatened",
            "violence_threatened",
            "dominic_in_danger",
            "hostility_detected",
            "protective_instinct",
        )
    )


def _ayla_scholar_mediation(context: ContextSnapshot) -> bool:
    return (
        any(in_room(context, fragment) for fragment in ("library", "study", "academy"))
        or any(has_flag(context, flag) for flag in ("scholarly_discussion", "intellectual_debate", "knowledge_disputed"))
        or any(has_trait(context, trait) for trait in ("scholar", "intellectual"))
    )


def _al_earth_calming(context: ContextSnapshot) -> bool:
    return (
        any(has_trait(context, trait) for trait in ("nature_lover", "druid", "earth_connected"))
        or any(has_flag(context, flag) for flag in ("earth_connection", "natural_harmony", "emotional_turmoil"))
        or any(in_room(context, fragment) for fragment in ("grove", "garden", "forest", "meadow"))
    )


def _wendell_authority_assertion(context: ContextSnapshot) -> bool:
    offended = any(
        has_flag(context, flag)
        for flag in ("disrespected_wendell", "academic_protocol_violated", "authority_challenged", "wendell_offended")
    )
    unforgiven = has_flag(context, "wendell_riddle_failed") and not has_flag(context, "wendell_forgiveness")
    return offended or unforgiven


def _player_reputation(context: ContextSnapshot) -> bool:
    return (
        player_reputation(context) >= 15
        or any(has_trait(context, trait) for trait in ("respected", "leader", "hero", "charismatic"))
        or any(has_flag(context, flag) for flag in ("hero_status", "respected_leader", "proven_worthy"))
    )


def _morthos_cynical_observation(context: ContextSnapshot) -> bool:
    return any(
        has_flag(context, flag)
        for flag in (
            "philosophical_discussion",
            "hope_expressed",
            "optimism_displayed",
            "idealistic_speech",
            "naive_belief",
            "reality_check_needed",
        )
    ) or any(has_trait(context, trait) for trait in ("optimistic", "idealistic", "hopeful"))


def _dominic_innocent_defusion(context: ContextSnapshot) -> bool:
    if not has_flag(context, "tension_rising"):
        return False
    if has_flag(context, "violence_threatened") or has_flag(context, "dominic_scared"):
        return False
    return any(
        has_flag(context, flag) for flag in ("argument_about_dominic", "mild_disagreement", "confusion_detected")
    )


def default_rules() -> List[InterventionRule]:
    """Fresh copies of the built-in rule set."""

    return [
        InterventionRule(
            id="albie_peacekeeper",
            intervening_npc="albie",
            target_npcs=["mr wendell", "morthos", "polly", "dominic"],
            condition=_albie_peacekeeper,
            priority=10,
            cooldown=timedelta(seconds=30),
            max_occurrences=3,
            max_per_hour=5,
            messages=InterventionMessages(
                intervention="Albie steps in: 'Let's all remain civil, shall we?'",
                suppressed=[
                    "nods and steps back reluctantly.",
                    "grumbles but complies with Albie's request.",
                    "looks annoyed but respects Albie's authority.",
                    "maintains composure under Albie's watchful eye.",
                ],
                success="The tension in the room dissipates under Albie's authority.",
                failure="Albie's intervention seems to have little effect.",
            ),
        ),
        InterventionRule(
            id="polly_dominic_protection",
            intervening_npc="polly",
            target_npcs=["morthos", "mr wendell", "player"],
            condition=_polly_dominic_protection,
            priority=9,
            cooldown=timedelta(seconds=20),
            max_occurrences=5,
            blocked_flags=["polly_defeated", "polly_incapacitated"],
            messages=InterventionMessages(
                intervention="Polly steps protectively in front of Dominic: 'Don't you dare!'",
                suppressed=[
                    "backs away from Polly's fierce protection.",
                    "recognizes Polly's determination and retreats.",
                    "respects the bond between Polly and Dominic.",
                    "is intimidated by Polly's protective stance.",
                ],
                success="Polly's protective stance successfully defuses the threat.",
                failure="Polly's intervention only increases the tension.",
            ),
        ),
        InterventionRule(
            id="ayla_scholar_mediation",
            intervening_npc="ayla",
            target_npcs=["morthos", "mr wendell"],
            condition=_ayla_scholar_mediation,
            priority=8,
            cooldown=timedelta(seconds=45),
            messages=InterventionMessages(
                intervention="Ayla raises her hand: 'Perhaps we should approach this with scholarly discourse.'",
                suppressed=[
                    "considers Ayla's words and moderates their tone.",
                    "respects Ayla's wisdom and steps back.",
                    "acknowledges the merit in Ayla's suggestion.",
                    "adopts a more academic approach to the discussion.",
                ],
                success="The discussion becomes more academic and less heated.",
                failure="The scholarly approach doesn't seem to resonate.",
            ),
        ),
        InterventionRule(
            id="al_earth_calming",
            intervening_npc="al",
            target_npcs=["morthos", "polly", "dominic"],
            condition=_al_earth_calming,
            priority=7,
            cooldown=timedelta(seconds=60),
            messages=InterventionMessages(
                intervention="Al hums softly: 'The earth calls for harmony, friends.'",
                suppressed=[
                    "feels the earth's calming influence and relaxes.",
                    "is soothed by Al's earthbound presence.",
                    "connects with the natural harmony Al represents.",
                    "takes a deep breath and finds inner peace.",
                ],
                success="A sense of natural calm settles over the group.",
                failure="The natural harmony doesn't quite take hold.",
            ),
        ),
        InterventionRule(
            id="wendell_authority_assertion",
            intervening_npc="mr wendell",
            target_npcs=["morthos", "polly", "player"],
            condition=_wendell_authority_assertion,
            priority=6,
            cooldown=timedelta(seconds=40),
            max_occurrences=2,
            blocked_flags=["wendell_humbled", "wendell_defeated"],
            messages=InterventionMessages(
                intervention="Mr Wendell draws himself up imperiously: 'I will not tolerate such insubordination!'",
                suppressed=[
                    "grudgingly acknowledges Wendell's authority.",
                    "shows reluctant respect for Wendell's position.",
                    "defers to Wendell's academic standing.",
                    "is cowed by Wendell's imperious manner.",
                ],
                success="Wendell's authority brings order to the situation.",
                failure="Wendell's pompous display falls flat.",
            ),
        ),
        InterventionRule(
            id="player_reputation_intervention",
            intervening_npc="player",
            target_npcs=["morthos", "mr wendell", "polly"],
            condition=_player_reputation,
            priority=5,
            min_reputation=15,
            messages=InterventionMessages(
                intervention="Your reputation precedes you, and the NPCs show you respect.",
                suppressed=[
                    "acknowledges your standing and moderates their behavior.",
                    "shows deference to your established reputation.",
                    "respects your proven worth and steps back.",
                    "recognizes your authority and complies.",
                ],
                success="Your influence brings calm to the situation.",
                failure="Despite your reputation, tensions remain high.",
            ),
        ),
        InterventionRule(
            id="morthos_cynical_observation",
            intervening_npc="morthos",
            target_npcs=["ayla", "mr wendell", "polly"],
            condition=_morthos_cynical_observation,
            priority=4,
            cooldown=timedelta(seconds=50),
            messages=InterventionMessages(
                intervention="Morthos interjects with dark wisdom: 'How... optimistic. Reality has a way of correcting such notions.'",
                suppressed=[
                    "considers Morthos's cynical perspective soberly.",
                    "is given pause by Morthos's dark wisdom.",
                    "reluctantly acknowledges the truth in Morthos's words.",
                    "finds their optimism tempered by harsh reality.",
                ],
                success="Morthos's grim reality check tempers the discussion.",
                failure="Morthos's cynicism is dismissed as mere pessimism.",
            ),
        ),
        InterventionRule(
            id="dominic_innocent_defusion",
            intervening_npc="dominic",
            target_npcs=["morthos", "mr wendell", "polly"],
            condition=_dominic_innocent_defusion,
            priority=3,
            cooldown=timedelta(seconds=25),
            max_occurrences=4,
            blocked_flags=["dominic_scared", "dominic_upset"],
            messages=InterventionMessages(
                intervention="Dominic asks innocently: 'Are we playing a game? Can I play too?'",
                suppressed=[
                    "is disarmed by Dominic's innocent question.",
                    "can't help but smile at Dominic's childlike wonder.",
                    "finds their anger melting away at Dominic's innocence.",
                    "is reminded of what's truly important by Dominic's presence.",
                ],
                success="Dominic's innocent charm defuses the tension naturally.",
                failure="Even Dominic's innocence can't lighten the mood.",
            ),
        ),
    ]


########## Engine ##########


class InterventionEngine:
    """Owns the rule set, per-rule history, and the recent-intervention ring."""

    def __init__(
        self,
        clock: Clock = utc_now,
        rules: Optional[List[InterventionRule]] = None,
        message_sink: Optional[MessageSink] = None,
    ) -> None:
        self.clock = clock
        self.message_sink = message_sink
        self._rules: List[InterventionRule] = []
        self._history: Dict[str, RuleHistory] = {}
        self._recent: List[InterventionRecord] = []
        for rule in default_rules() if rules is None else rules:
            self.add_rule(rule)

    ########## Evaluation ##########

    def evaluate(self, context: ContextSnapshot, now: Optional[datetime] = None) -> InterventionResult:
        """Fire the first eligible rule in priority order, if any."""

        stamp = now or self.clock()
        try:
            return self._evaluate(context, stamp)
        except Exception as error:  # a bad rule set must not break the tick
            log_run_event(f"intervention: evaluation failed ({error})")
            return InterventionResult(reason="evaluation error", timestamp=stamp)

    def _evaluate(self, context: ContextSnapshot, now: datetime) -> InterventionResult:
        # 1 Keep rules whose intervener is in the room, highest priority first.  # steps
        # 2 Walk gates in order, then the predicate; first pass wins.            # steps
        if not isinstance(context, ContextSnapshot) or not context.npcs_present:
            return InterventionResult(reason="no npcs present", timestamp=now)
        present = [npc.lower().strip() for npc in context.npcs_present]
        for rule in self._ordered_rules(present):
            suppressed = _suppressed_targets(rule, present)
            if not suppressed:
                continue
            history = self._history_for(rule.id, now)
            if _gate_failure(rule, history, context, now) is not None:
                continue
            if not self._predicate_passes(rule, context):
                continue
            return self._fire(rule, suppressed, context, now)
        return InterventionResult(reason="no rule fired", timestamp=now)

    def _ordered_rules(self, present: List[str]) -> List[InterventionRule]:
        available = [rule for rule in self._rules if rule.intervening_npc.lower().strip() in present]
        return sorted(available, key=lambda rule: rule.priority, reverse=True)

    def _predicate_passes(self, rule: InterventionRule, context: ContextSnapshot) -> bool:
        if rule.condition is None:
            return True
        try:
            return bool(rule.condition(context))
        except Exception as error:
            log_run_event(f"intervention: condition for {rule.id} raised {type(error).__name__}: {error}")
            return False

    def _history_for(self, rule_id: str, now: datetime) -> RuleHistory:
        history = self._history.get(rule_id)
        if history is None:
            history = RuleHistory(hour_window_start=now)
            self._history[rule_id] = history
        if now - history.hour_window_start > config.HOURLY_WINDOW:
            history.hourly_count = 0
            history.hour_window_start = now
        return history

    def _peek_history(self, rule_id: str, now: datetime) -> RuleHistory:
        """Read-only view of a rule's history as _history_for would see it."""

        history = self._history.get(rule_id)
        if history is None:
            return RuleHistory(hour_window_start=now)
        if now - history.hour_window_start > config.HOURLY_WINDOW:
            return history.model_copy(update={"hourly_count": 0, "hour_window_start": now})
        return history

    def _fire(
        self,
        rule: InterventionRule,
        suppressed: List[str],
        context: ContextSnapshot,
        now: datetime,
    ) -> InterventionResult:
        messages: List[str] = [rule.messages.intervention]
        self._emit(rule.messages.intervention, "intervention")
        lines = rule.messages.suppressed
        for index, npc in enumerate(suppressed):
            line = f"{display_name(npc)} {lines[index % len(lines)]}"
            messages.append(line)
            self._emit(line, "suppression")
        if rule.messages.success:
            messages.append(rule.messages.success)
            self._emit(rule.messages.success, "intervention_success")

        history = self._history[rule.id]
        history.count += 1
        history.hourly_count += 1
        history.last_trigger = now
        history.cooldown_until = now + (rule.cooldown or timedelta(0))

        self._recent.append(
            InterventionRecord(
                rule_id=rule.id,
                timestamp=now,
                context=f"{context.room_id}_{len(context.npcs_present)}npcs",
            )
        )
        if len(self._recent) > config.MAX_RECENT_INTERVENTIONS:
            del self._recent[: len(self._recent) - config.MAX_RECENT_INTERVENTIONS]

        log_run_event(f"intervention: {rule.intervening_npc} fired {rule.id}, suppressed {', '.join(suppressed)}")
        return InterventionResult(
            occurred=True,
            intervening_npc=rule.intervening_npc,
            suppressed_npcs=suppressed,
            messages=messages,
            rule_id=rule.id,
            reason=f"{rule.id} fired",
            effect_duration=rule.cooldown,
            timestamp=now,
        )

    def _emit(self, message: str, kind: str) -> None:
        if self.message_sink is None:
            return
        try:
            self.message_sink(message, kind)
        except Exception as error:
            log_run_event(f"intervention: message sink failed ({error})")

    ########## Rule Management ##########

    def add_rule(self, rule: InterventionRule | Mapping[str, Any]) -> bool:
        """Register or replace a rule by id; invalid rules return False."""

        try:
            candidate = rule if isinstance(rule, InterventionRule) else InterventionRule(**dict(rule))
        except (ValidationError, TypeError) as error:
            log_run_event(f"intervention: rejected malformed rule ({error.__class__.__name__})")
            return False
        problem = _rule_problem(candidate)
        if problem:
            log_run_event(f"intervention: rejected rule {candidate.id or '?'} ({problem})")
            return False
        for index, existing in enumerate(self._rules):
            if existing.id == candidate.id:
                self._rules[index] = candidate
                return True
        self._rules.append(candidate)
        return True

    def remove_rule(self, rule_id: str) -> bool:
        if not isinstance(rule_id, str) or not rule_id:
            return False
        for index, rule in enumerate(self._rules):
            if rule.id == rule_id:
                del self._rules[index]
                self._history.pop(rule_id, None)
                self._recent = [record for record in self._recent if record.rule_id != rule_id]
                return True
        return False

    def rules(self) -> List[InterventionRule]:
        return [rule.model_copy(deep=True) for rule in self._rules]

    def history(self) -> Dict[str, RuleHistory]:
        return {rule_id: history.model_copy() for rule_id, history in self._history.items()}

    def reset(self) -> None:
        """Forget all trigger history; rules stay registered."""

        self._history.clear()
        self._recent.clear()

    ########## Diagnostics ##########

    def can_intervene(self, npc_id: str, context: ContextSnapshot, now: Optional[datetime] = None) -> bool:
        """Whether any rule for this NPC would fire right now."""

        if not isinstance(npc_id, str) or not npc_id or not context.npcs_present:
            return False
        stamp = now or self.clock()
        present = [npc.lower().strip() for npc in context.npcs_present]
        wanted = npc_id.lower().strip()
        if wanted not in present:
            return False
        for rule in self._rules:
            if rule.intervening_npc.lower().strip() != wanted:
                continue
            if not _suppressed_targets(rule, present):
                continue
            if _gate_failure(rule, self._peek_history(rule.id, stamp), context, stamp) is not None:
                continue
            if self._predicate_passes(rule, context):
                return True
        return False

    def potential_interventions(
        self,
        context: ContextSnapshot,
        now: Optional[datetime] = None,
    ) -> List[PotentialIntervention]:
        """Every rule with whether it could fire and why not."""

        stamp = now or self.clock()
        present = [npc.lower().strip() for npc in context.npcs_present]
        report: List[PotentialIntervention] = []
        for rule in self._rules:
            suppressed = _suppressed_targets(rule, present)
            reason: Optional[str] = None
            if rule.intervening_npc.lower().strip() not in present:
                reason = "NPC not present"
            elif not suppressed:
                reason = "No targets to suppress"
            else:
                reason = _gate_failure(rule, self._peek_history(rule.id, stamp), context, stamp)
                if reason is None and not self._predicate_passes(rule, context):
                    reason = "Conditions not met"
            report.append(
                PotentialIntervention(
                    rule_id=rule.id,
                    priority=rule.priority,
                    can_trigger=reason is None,
                    suppressed_count=len(suppressed),
                    reason=reason,
                )
            )
        report.sort(key=lambda entry: entry.priority, reverse=True)
        return report

    def recent_patterns(self) -> List[InterventionRecord]:
        return [record.model_copy() for record in self._recent]

    def stats(self) -> Dict[str, Any]:
        most_active: Optional[str] = None
        best = 0
        for rule_id, history in self._history.items():
            if history.count > best:
                best = history.count
                most_active = rule_id
        average: Optional[timedelta] = None
        if len(self._recent) > 1:
            gaps = [
                later.timestamp - earlier.timestamp
                for earlier, later in zip(self._recent, self._recent[1:])
            ]
            average = sum(gaps, timedelta(0)) / len(gaps)
        return {
            "total_rules": len(self._rules),
            "active_history": len(self._history),
            "recent_interventions": len(self._recent),
            "most_active_rule": most_active,
            "average_interval": average,
        }


def _suppressed_targets(rule: InterventionRule, present: List[str]) -> List[str]:
    targets = {target.lower().strip() for target in rule.target_npcs}
    intervener = rule.intervening_npc.lower().strip()
    return [npc for npc in present if npc in targets and npc != intervener]


def _gate_failure(
    rule: InterventionRule,
    history: RuleHistory,
    context: ContextSnapshot,
    now: datetime,
) -> Optional[str]:
    """First failing eligibility gate, or None when all pass."""

    if rule.cooldown and history.cooldown_until is not None and now < history.cooldown_until:
        return "Cooldown active"
    if rule.max_occurrences is not None and history.count >= rule.max_occurrences:
        return "Lifetime limit reached"
    if rule.max_per_hour is not None and history.hourly_count >= rule.max_per_hour:
        return "Hourly limit reached"
    for flag in rule.required_flags:
        if not has_flag(context, flag):
            return f"Missing flag {flag}"
    for flag in rule.blocked_flags:
        if has_flag(context, flag):
            return f"Blocked by flag {flag}"
    for trait in rule.required_traits:
        if not has_trait(context, trait):
            return f"Missing trait {trait}"
    for item in rule.required_items:
        if not has_item(context, item):
            return f"Missing item {item}"
    if rule.min_reputation is not None and player_reputation(context) < rule.min_reputation:
        return "Reputation too low"
    if rule.room_restrictions and not any(in_room(context, room) for room in rule.room_restrictions):
        return "Room not allowed"
    return None


def _rule_problem(rule: InterventionRule) -> Optional[str]:
    if not rule.id.strip():
        return "empty id"
    if not rule.intervening_npc.strip():
        return "empty intervening npc"
    if not rule.target_npcs:
        return "no targets"
    if rule.priority < 0:
        return "negative priority"
    if not rule.messages.intervention:
        return "empty intervention line"
    if not rule.messages.suppressed:
        return "no suppression lines"
    return None
