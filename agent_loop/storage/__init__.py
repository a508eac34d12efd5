# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Storage module for loop records and configuration history."""

from .repository import LoopRepository
from .config_store import ConfigStore, DEFAULT_PROMPTS

__all__ = ['LoopRepository', 'ConfigStore', 'DEFAULT_PROMPTS']
