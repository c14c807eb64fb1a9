"""
YAML-based prompt management for the care-line scheduling system

Preset check-in prompts live in prompts/*.yaml. Templates use {{placeholder}}
variables that are filled from the patient record just before a call.
"""
import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from scheduling.models import Patient

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def prompt_variables(patient: Patient, today: date) -> Dict[str, str]:
    """Values substituted into call prompts"""
    age = patient.age_on(today)
    return {
        "patientName": patient.full_name,
        "patientAge": str(age) if age is not None else "unknown",
        "patientCondition": patient.primary_condition.value,
    }


def render_prompt(template: str, patient: Patient, today: date) -> str:
    """
    Fill a prompt template with patient attributes

    Replaces {{patientName}}, {{patientAge}} and {{patientCondition}}; unknown
    placeholders are left untouched.
    """
    variables = prompt_variables(patient, today)

    def substitute(match):
        return variables.get(match.group(1), match.group(0))

    return _PLACEHOLDER.sub(substitute, template or "")


class PromptManager:
    """Manages preset prompt templates with YAML loading and caching"""

    def __init__(self, prompts_dir: str = "../prompts"):
        # Get the directory relative to this file's location
        current_dir = Path(__file__).parent
        self.prompts_dir = current_dir / prompts_dir
        self._prompts_cache = {}

    def _load(self, preset_id: str) -> Dict[str, Any]:
        if preset_id not in self._prompts_cache:
            prompt_file = self.prompts_dir / f"{preset_id}.yaml"

            if not prompt_file.exists():
                logger.warning(f"Prompt file not found: {prompt_file}")
                raise FileNotFoundError(f"Prompt file {prompt_file} does not exist.")

            with open(prompt_file, 'r', encoding='utf-8') as f:
                prompt_data = yaml.safe_load(f) or {}

            if not prompt_data.get('template'):
                raise ValueError(f"Prompt preset {preset_id} has no template")

            self._prompts_cache[preset_id] = prompt_data
            logger.info(f"Loaded prompt template: {preset_id}")

        return self._prompts_cache[preset_id]

    def list_presets(self) -> List[Dict[str, Any]]:
        """Metadata of every preset, sorted by file name"""
        presets = []
        for prompt_file in sorted(self.prompts_dir.glob("*.yaml")):
            try:
                presets.append(self.get_preset_info(prompt_file.stem))
            except (yaml.YAMLError, ValueError) as e:
                logger.error(f"Skipping invalid prompt preset {prompt_file.name}: {e}")
        return presets

    def get_preset_info(self, preset_id: str) -> Dict[str, Any]:
        """Get preset metadata (name, description, version)"""
        prompt_data = self._load(preset_id)
        return {
            "id": preset_id,
            "name": prompt_data.get("name", preset_id),
            "description": prompt_data.get("description", "No description available"),
            "version": prompt_data.get("version", "Unknown"),
        }

    def get_template(self, preset_id: str) -> str:
        return self._load(preset_id)['template'].strip()

    def render(self, preset_id: str, patient: Patient, today: date) -> str:
        return render_prompt(self.get_template(preset_id), patient, today)

    def find_by_name(self, name: str) -> Optional[str]:
        """Preset id whose display name matches, if any"""
        for preset in self.list_presets():
            if preset["name"].lower() == name.strip().lower():
                return preset["id"]
        return None

    def reload_prompts(self):
        """Reload all cached prompts (useful for development)"""
        self._prompts_cache.clear()
        logger.info("Prompt cache cleared - prompts will be reloaded")


# Global prompt manager instance
prompt_manager = PromptManager()
