# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Decline policy for WSUS updates.

Determines whether an update should be declined. Rules are checked in a
fixed order and the first match decides:

1. beta: title mentions preview/beta/insider/dev channel, or the update is
   flagged beta
2. superseded: a newer update supersedes it
3. arm64: title mentions ARM64
4. x86: title mentions x86
5. obsolete_version: title names a retired platform version
6. language_pack: title names a language pack
7. driver: classification is Drivers

Updates that are already declined are never re-evaluated. In decline-all
mode every other update is declined without consulting the rules.

Title matching is a case-insensitive substring test.

Example:
    Classify a single update:

        from wsusmaint.policy.classifier import DeclinePolicy, classify
        from wsusmaint.server.base import UpdateRecord

        decision = classify(
            UpdateRecord(id="1", title="2024-03 Security Update for ARM64-based Systems"),
            DeclinePolicy(),
        )
        print(decision.reason)  # DeclineReason.ARM64

"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from wsusmaint.server.base import UpdateRecord

BETA_TERMS = ("preview", "beta", "insider", "dev channel")
ARM64_MARKER = "arm64"
X86_MARKER = "x86"
DRIVERS_CLASSIFICATION = "drivers"

DEFAULT_OBSOLETE_VERSIONS = (
    "Windows 7",
    "Windows 8.1",
    "Windows Server 2008",
    "Windows Server 2012",
    "Version 1507",
    "Version 1511",
    "Version 1607",
    "Version 1703",
    "Version 1709",
    "Version 1803",
    "Version 1809",
    "Version 1903",
    "Version 1909",
    "Version 2004",
    "Version 20H2",
    "Version 21H1",
)

DEFAULT_LANGUAGE_PACK_MARKERS = (
    "Language Pack",
    "LanguagePack",
    "Language Interface Pack",
    "LanguageFeatureOnDemand",
    "Language Features on Demand",
    "Local Experience Pack",
)


class DeclineReason(str, Enum):
    """Rule that caused an update to be declined."""

    DECLINE_ALL = "decline_all"
    BETA = "beta"
    SUPERSEDED = "superseded"
    ARM64 = "arm64"
    X86 = "x86"
    OBSOLETE_VERSION = "obsolete_version"
    LANGUAGE_PACK = "language_pack"
    DRIVER = "driver"


@dataclass(frozen=True)
class DeclinePolicy:
    """Configuration for decline decisions.

    Attributes:
        obsolete_versions: Platform version labels treated as retired.
        language_pack_markers: Title fragments identifying language packs.
        decline_all: Decline every update that is not already declined.

    """

    obsolete_versions: tuple[str, ...] = DEFAULT_OBSOLETE_VERSIONS
    language_pack_markers: tuple[str, ...] = DEFAULT_LANGUAGE_PACK_MARKERS
    decline_all: bool = False


@dataclass(frozen=True)
class Decision:
    """Outcome of classifying one update.

    Attributes:
        should_decline: True if the update should be declined now.
        reason: Rule that matched, or None.
        skipped: True if the update was already declined and not evaluated.

    """

    should_decline: bool
    reason: DeclineReason | None = None
    skipped: bool = False


def _title_has(update: UpdateRecord, terms: Iterable[str]) -> bool:
    title = update.title.casefold()
    return any(term and term.casefold() in title for term in terms)


Rule = tuple[DeclineReason, Callable[[UpdateRecord, DeclinePolicy], bool]]

# Priority order; a title can match several rules, only the first one counts
DECLINE_RULES: tuple[Rule, ...] = (
    (DeclineReason.BETA, lambda u, p: u.is_beta or _title_has(u, BETA_TERMS)),
    (DeclineReason.SUPERSEDED, lambda u, p: u.is_superseded),
    (DeclineReason.ARM64, lambda u, p: _title_has(u, (ARM64_MARKER,))),
    (DeclineReason.X86, lambda u, p: _title_has(u, (X86_MARKER,))),
    (DeclineReason.OBSOLETE_VERSION, lambda u, p: _title_has(u, p.obsolete_versions)),
    (DeclineReason.LANGUAGE_PACK, lambda u, p: _title_has(u, p.language_pack_markers)),
    (
        DeclineReason.DRIVER,
        lambda u, p: u.classification.casefold() == DRIVERS_CLASSIFICATION,
    ),
)


def classify(update: UpdateRecord, policy: DeclinePolicy) -> Decision:
    """Decide whether an update should be declined.

    Args:
        update: Update record as reported by the server.
        policy: DeclinePolicy controlling the decision.

    Returns:
        Decision with should_decline set and the matching rule, if any.

    """
    if update.is_declined:
        return Decision(should_decline=False, skipped=True)

    if policy.decline_all:
        return Decision(should_decline=True, reason=DeclineReason.DECLINE_ALL)

    for reason, matches in DECLINE_RULES:
        if matches(update, policy):
            return Decision(should_decline=True, reason=reason)

    return Decision(should_decline=False)
