"""
Category configuration loader
Reads the canonical taxonomy and per-shop rule files from YAML
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from preprocessor.core.exceptions import ConfigurationError
from preprocessor.core.logging import log
from preprocessor.core.taxonomy import TaxonomyDocument
from preprocessor.schemas.mapping import CategoryRule

RULE_SUFFIXES = (".yaml", ".yml")


class CategoryConfigLoader:
    """Loads and persists mapping configuration"""

    def __init__(self, taxonomy_file: Path, rules_dir: Path):
        """
        Initialize config loader

        Args:
            taxonomy_file: Canonical categories YAML
            rules_dir: Directory holding one <shop>.yaml rule list per shop
        """
        self.taxonomy_file = Path(taxonomy_file)
        self.rules_dir = Path(rules_dir)

    def load_taxonomy(self) -> TaxonomyDocument:
        """Load the taxonomy document; any failure is a configuration error"""
        if not self.taxonomy_file.exists():
            raise ConfigurationError(f"Taxonomy file not found: {self.taxonomy_file}", path=str(self.taxonomy_file))

        try:
            with open(self.taxonomy_file, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read taxonomy: {e}", path=str(self.taxonomy_file)) from e

        try:
            document = TaxonomyDocument.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid taxonomy: {e}", path=str(self.taxonomy_file)) from e

        log.info(f"Loaded taxonomy from {self.taxonomy_file}")
        return document

    def load_shop_rules(self) -> Dict[str, List[CategoryRule]]:
        """Load every shop rule file; unreadable files are skipped"""
        rules: Dict[str, List[CategoryRule]] = {}

        if not self.rules_dir.exists():
            log.warning(f"Rules directory not found: {self.rules_dir}")
            return rules

        for rule_file in sorted(self.rules_dir.iterdir()):
            if rule_file.suffix not in RULE_SUFFIXES:
                continue
            shop = rule_file.stem
            loaded = self.load_rules_file(rule_file)
            if loaded is not None:
                rules[shop] = loaded

        log.info(f"Loaded rules for {len(rules)} shops from {self.rules_dir}")
        return rules

    def load_rules_file(self, rule_file: Path) -> Optional[List[CategoryRule]]:
        try:
            with open(rule_file, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or []
            if not isinstance(raw, list):
                raise ValueError("rule file must contain a list")
            return [CategoryRule.model_validate(item) for item in raw]
        except (OSError, yaml.YAMLError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            log.warning(f"Failed to load rules for shop {rule_file.stem}: {e}")
            return None

    def save_shop_rules(self, shop: str, rules: List[CategoryRule]) -> Path:
        """Rewrite a shop's whole rule file through a temp file and rename"""
        self.rules_dir.mkdir(parents=True, exist_ok=True)
        target = self.rules_dir / f"{shop}.yaml"
        payload = [rule.model_dump(mode="json") for rule in rules]

        fd, tmp_path = tempfile.mkstemp(dir=self.rules_dir, prefix=f".{shop}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(payload, f, allow_unicode=True, sort_keys=False)
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        log.debug(f"Saved {len(rules)} rules for {shop} to {target}")
        return target
