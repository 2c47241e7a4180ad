"""Bundled data for the Concept Cloud package."""

from __future__ import annotations

import json
from importlib import resources
from typing import Dict, List, Union


def load_calibration_pairs() -> List[Dict[str, Union[str, bool]]]:
    """Hand-labelled answer pairs used to sanity check the similarity threshold."""
    with resources.files(__package__).joinpath("calibration_pairs.json").open("r", encoding="utf-8") as stream:
        return json.load(stream)


__all__ = ["load_calibration_pairs"]
