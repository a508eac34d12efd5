# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from datetime import datetime
from dataclasses import field, dataclass


class EventType(Enum):
    LOOP_STARTED = "loop_started"
    ITERATION_STARTED = "iteration_started"
    PERSONAS_GENERATED = "personas_generated"
    PERSONA_REJECTED = "persona_rejected"
    SIMULATION_COMPLETED = "simulation_completed"
    FEEDBACK_GENERATED = "feedback_generated"
    CONFIG_VERSION_CREATED = "config_version_created"
    ITERATION_COMPLETED = "iteration_completed"
    LOOP_CONVERGED = "loop_converged"
    LOOP_COMPLETED = "loop_completed"
    AGENT_STEP = "agent_step"
    AGENT_ABORTED = "agent_aborted"
    FALLBACK_USED = "fallback_used"


@dataclass
class Event:
    """Base class for all events in the stream"""

    type: EventType
    content: str
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
