# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .base_agent import BaseReActAgent
from .parser import CompletionPolicy, parse_response

__all__ = ["BaseReActAgent", "CompletionPolicy", "parse_response"]
