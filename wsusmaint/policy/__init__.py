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

"""Update decline policy for wsusmaint.

Modules:

classifier : module
    Ordered decline rules and the classify() decision function.

Public API:

DeclinePolicy : class
    Configuration for decline decisions.
Decision : class
    Result of classifying one update.
DeclineReason : enum
    Rule that matched.
classify : function
    Decide whether an update should be declined.

Example:
    from wsusmaint.policy import DeclinePolicy, classify

    decision = classify(update, DeclinePolicy(decline_all=False))
    if decision.should_decline:
        server.decline(update.id)

"""

from .classifier import (
    DECLINE_RULES,
    Decision,
    DeclinePolicy,
    DeclineReason,
    classify,
)

__all__ = [
    "DECLINE_RULES",
    "Decision",
    "DeclinePolicy",
    "DeclineReason",
    "classify",
]
