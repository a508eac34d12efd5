# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .base import InferenceService, Message, extract_json
from .factory import create_inference_service

__all__ = ["InferenceService", "Message", "extract_json", "create_inference_service"]
