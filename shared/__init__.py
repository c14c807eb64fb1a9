"""
Shared utilities package for the care-line scheduling system

Contains utilities used by the executor, scheduler and CLI:
- prompt_manager: preset prompt loading and patient placeholder rendering
"""

from .prompt_manager import PromptManager, prompt_manager, render_prompt

__all__ = [
    'PromptManager',
    'prompt_manager',
    'render_prompt',
]
