# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Deployment target → platform tag mapping.

Archives on the mirror carry a platform tag in their filename
(`foo-1.0_0.pv9.tgz`). The set of supported releases is fixed; anything else
is a configuration error, not something the installer tries to guess around.
"""

from __future__ import annotations

from binpm.errors import ConfigurationError

PLATFORM_TAGS: dict[str, str] = {
	"10.6": "pv6",
	"10.7": "pv7",
	"10.8": "pv8",
	"10.9": "pv9",
	"10.10": "pv10",
	"10.11": "pv11",
	"10.12": "pv12",
	"10.13": "pv13",
	"10.14": "pv14",
	"10.15": "pv15",
	"11": "pv20",
	"12": "pv21",
	"13": "pv22",
	"14": "pv23",
	"15": "pv24",
}


def normalize_target(target: str) -> str:
	"""
	Reduce a deployment target to the release key used by `PLATFORM_TAGS`.

	`10.9.5` → `10.9`, `12.4` → `12`.
	"""
	parts = target.strip().split(".")
	if not parts or not parts[0]:
		return ""
	if parts[0] == "10":
		return ".".join(parts[:2])
	return parts[0]


def platform_tag(target: str) -> str:
	key = normalize_target(target)
	tag = PLATFORM_TAGS.get(key)
	if tag is None:
		supported = ", ".join(PLATFORM_TAGS)
		raise ConfigurationError(f"unsupported deployment target '{target}' (supported: {supported})")
	return tag
