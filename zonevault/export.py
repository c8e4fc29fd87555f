"""
Export - Render snapshots as JSON, YAML, CSV or XML.

JSON and YAML carry the full record and can be loaded back into a Snapshot.
CSV and XML are presentation formats for spreadsheets and other tooling;
they drop merge provenance and value types, so they are export-only.
"""

import csv
import io
import json
import xml.etree.ElementTree as ET
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ValidationError
from .snapshot.models import Snapshot


class ExportFormat(str, Enum):
    JSON = "json"
    YAML = "yaml"
    CSV = "csv"
    XML = "xml"

    @classmethod
    def parse(cls, value) -> "ExportFormat":
        if isinstance(value, cls):
            return value
        text = str(value).lower()
        if text == "yml":
            return cls.YAML
        try:
            return cls(text)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ValidationError(f"Unknown export format: {value!r}. Valid: {valid}")

    @property
    def extension(self) -> str:
        return "yml" if self == ExportFormat.YAML else self.value

    @property
    def lossless(self) -> bool:
        return self in (ExportFormat.JSON, ExportFormat.YAML)


class SnapshotExporter:
    """Converts one snapshot to the supported formats."""

    CSV_HEADER = ["Type", "Setting", "Value", "Description"]

    def __init__(self, snapshot: Snapshot):
        self.snapshot = snapshot
        self.data = snapshot.to_dict()

    def export(self, fmt=ExportFormat.JSON) -> bytes:
        """Render the snapshot in the requested format."""
        fmt = ExportFormat.parse(fmt)
        renderers = {
            ExportFormat.JSON: self._to_json,
            ExportFormat.YAML: self._to_yaml,
            ExportFormat.CSV: self._to_csv,
            ExportFormat.XML: self._to_xml,
        }
        return renderers[fmt]()

    def _to_json(self) -> bytes:
        return json.dumps(self.data, indent=2, ensure_ascii=False).encode("utf-8")

    def _to_yaml(self) -> bytes:
        text = yaml.safe_dump(
            self.data,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
        return text.encode("utf-8")

    def _to_csv(self) -> bytes:
        """One row per setting, two per firewall rule (expression and action)."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(self.CSV_HEADER)

        for key, value in self.snapshot.resource_settings.items():
            writer.writerow(["Resource Setting", key, _json_value(value), ""])
        for key, value in self.snapshot.local_config.items():
            writer.writerow(["Local Config", key, _json_value(value), ""])
        for index, rule in enumerate(self.snapshot.firewall_rules, start=1):
            writer.writerow(["Firewall Rule", f"Rule {index}", rule.expression, rule.description])
            writer.writerow(["Firewall Action", f"Rule {index}", rule.action, ""])

        return buffer.getvalue().encode("utf-8")

    def _to_xml(self) -> bytes:
        snapshot = self.snapshot
        metadata = self.data["metadata"]
        root = ET.Element("snapshot")

        meta_el = ET.SubElement(root, "metadata")
        for tag, key in (("id", "id"), ("createdAt", "createdAt"), ("createdBy", "createdBy"),
                         ("version", "version"), ("type", "type"), ("description", "description")):
            ET.SubElement(meta_el, tag).text = _text(metadata.get(key))

        resource_el = ET.SubElement(root, "resource")
        ET.SubElement(resource_el, "id").text = snapshot.resource_id
        ET.SubElement(resource_el, "name").text = snapshot.resource_name
        ET.SubElement(resource_el, "status").text = _text(snapshot.resource_status)

        for tag, section in (("resourceSettings", snapshot.resource_settings),
                             ("localConfig", snapshot.local_config)):
            if section:
                section_el = ET.SubElement(root, tag)
                for key, value in section.items():
                    ET.SubElement(section_el, "setting", name=str(key)).text = _json_value(value)

        if snapshot.firewall_rules:
            rules_el = ET.SubElement(root, "firewallRules")
            for index, rule in enumerate(snapshot.firewall_rules):
                rule_el = ET.SubElement(rules_el, "rule", id=str(index))
                ET.SubElement(rule_el, "expression").text = rule.expression
                ET.SubElement(rule_el, "action").text = rule.action
                ET.SubElement(rule_el, "description").text = rule.description
                if rule.priority is not None:
                    ET.SubElement(rule_el, "priority").text = str(rule.priority)

        ET.indent(root, space="  ")
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _json_value(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def export_snapshot(snapshot: Snapshot, fmt=ExportFormat.JSON,
                    output_path: Optional[str] = None) -> bytes:
    """
    Export a snapshot.

    Args:
        snapshot: Snapshot to render
        fmt: json, yaml, csv or xml
        output_path: Optional file path to write to

    Returns:
        Exported content as bytes
    """
    content = SnapshotExporter(snapshot).export(fmt)

    if output_path:
        Path(output_path).write_bytes(content)

    return content


def load_snapshot(data: bytes, fmt=ExportFormat.JSON) -> Snapshot:
    """
    Load a snapshot from a lossless export.

    Raises:
        ValidationError: CSV/XML input, or content that is not a snapshot record
    """
    fmt = ExportFormat.parse(fmt)
    if not fmt.lossless:
        raise ValidationError(f"{fmt.value.upper()} exports are presentation-only and cannot be loaded")

    text = data.decode("utf-8") if isinstance(data, bytes) else data
    try:
        if fmt == ExportFormat.JSON:
            record: Dict[str, Any] = json.loads(text)
        else:
            record = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ValidationError(f"Cannot parse {fmt.value} snapshot: {e}") from e

    return Snapshot.from_dict(record)
