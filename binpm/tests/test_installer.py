# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Installer tests against an in-memory mirror.

Every archive is really built, signed, downloaded, verified, extracted and
merged; only the network is fake.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace

import pytest

from binpm.errors import ConfigurationError, ExtractionError, IntegrityError, NotFoundError
from binpm.installer import strip_suffix


def _prefix_files(env) -> list[str]:
	prefix = env.settings.prefix
	if not prefix.exists():
		return []
	return sorted(str(p.relative_to(prefix)) for p in prefix.rglob("*") if not p.is_dir())


def test_strip_suffix():
	assert strip_suffix("foo-1.0_0") == "foo"
	assert strip_suffix("foo-bar-2") == "foo-bar"
	assert strip_suffix("foo") is None
	assert strip_suffix("-foo") is None


def test_install_single_package(env):
	env.publish("foo", files={"bin/foo": b"#!/bin/sh\necho foo\n", "share/doc/foo.txt": b"doc"})
	installer = env.installer()
	assert installer.install("foo") is True
	assert env.settings.prefix.joinpath("bin", "foo").read_bytes() == b"#!/bin/sh\necho foo\n"
	assert _prefix_files(env) == ["bin/foo", "share/doc/foo.txt"]
	assert installer.ledger.names() == ["foo"]
	assert env.mirror.paths_requested() == [
		"foo/",
		"foo/foo-1.0_0.pv9.tgz",
		"foo/foo-1.0_0.pv9.tgz.sig",
		"trust-anchor.pem",
	]
	# Scratch space is cleared after the manifest has been read.
	assert list(env.settings.scratch_dir.iterdir()) == []


def test_second_install_is_a_no_op(env):
	env.publish("foo")
	installer = env.installer()
	installer.install("foo")
	seen = len(env.mirror.requests)
	assert installer.install("foo") is False
	assert len(env.mirror.requests) == seen
	assert installer.ledger.names() == ["foo"]


def test_versioned_name_falls_back_to_base_name(env):
	env.publish("foo")
	installer = env.installer()
	installer.install("foo-1.0_0")
	assert installer.ledger.names() == ["foo"]
	assert env.mirror.paths_requested()[:2] == ["foo-1.0_0/", "foo/"]


def test_suffix_stripping_stops_at_installed_base_name(env):
	env.publish("foo")
	installer = env.installer()
	installer.install("foo")
	env.mirror.requests.clear()
	assert installer.install("foo-2.0") is False
	assert env.mirror.paths_requested() == ["foo-2.0/"]


def test_suffix_stripping_terminates_with_not_found(env):
	installer = env.installer()
	with pytest.raises(NotFoundError, match="fake-install"):
		installer.install("a-b-c")
	# k=2 strippable components: at most k+1 lookups.
	assert env.mirror.paths_requested() == ["a-b-c/", "a-b/", "a/"]
	assert installer.ledger.names() == []


def test_platform_mismatch_also_strips(env):
	env.publish("foo-tools", tag="pv12")
	env.publish("foo")
	installer = env.installer()
	installer.install("foo-tools")
	assert installer.ledger.names() == ["foo"]


def test_tolerant_mode_skips_missing_packages(env):
	installer = env.installer(tolerant=True)
	assert installer.install("ghost") is False
	assert installer.skipped == ["ghost"]
	assert installer.ledger.names() == []


def test_dependencies_are_installed_first(env):
	env.publish("foo", deps=["bar-2.0_1"])
	env.publish("bar", version="2.0_1")
	installer = env.installer()
	installer.install("foo")
	assert installer.ledger.names() == ["bar", "foo"]
	assert _prefix_files(env) == ["bin/bar", "bin/foo"]


def test_dependency_chain_and_shared_dependency(env):
	env.publish("app", deps=["libx-1.0_0", "liby-1.0_0"])
	env.publish("libx", deps=["base-1.0_0"])
	env.publish("liby", deps=["base-1.0_0"])
	env.publish("base")
	installer = env.installer()
	installer.install("app")
	names = installer.ledger.names()
	assert sorted(names) == ["app", "base", "libx", "liby"]
	assert names.index("base") < names.index("libx") < names.index("app")
	# base was downloaded once.
	assert env.mirror.paths_requested().count("base/base-1.0_0.pv9.tgz") == 1


def test_dependency_cycle_terminates(env):
	env.publish("a", deps=["b-1.0_0"])
	env.publish("b", deps=["a-1.0_0"])
	installer = env.installer()
	installer.install("a")
	assert installer.ledger.names() == ["b", "a"]


def test_ledger_only_holds_requested_or_reachable_names(env):
	env.publish("app", deps=["lib-1.0_0"])
	env.publish("lib")
	env.publish("unrelated")
	installer = env.installer()
	installer.install_all(["app"])
	reachable = {"app", "lib"}
	assert set(installer.ledger.names()) <= reachable


def test_missing_dependency_is_fatal(env):
	env.publish("foo", deps=["ghost-1.0_0"])
	installer = env.installer()
	with pytest.raises(NotFoundError):
		installer.install("foo")
	# foo's payload was merged but foo itself is not committed.
	assert installer.ledger.names() == []
	assert installer.current == "ghost"


def test_missing_dependency_is_skipped_in_tolerant_mode(env):
	env.publish("foo", deps=["ghost-1.0_0"])
	installer = env.installer(tolerant=True)
	installer.install("foo")
	assert installer.ledger.names() == ["foo"]
	assert installer.skipped == ["ghost-1.0"]


def test_bad_signature_never_reaches_the_prefix(env):
	env.publish("foo", bad_signature=True)
	installer = env.installer(tolerant=True)
	with pytest.raises(IntegrityError):
		installer.install("foo")
	assert _prefix_files(env) == []
	assert installer.ledger.names() == []
	# The rejected download is not kept around for the next run.
	assert not (env.settings.cache_dir / "foo-1.0_0.pv9.tgz").exists()


def test_unsigned_archive_is_an_integrity_error(env):
	env.publish("foo", signed=False)
	with pytest.raises(IntegrityError, match="no signature"):
		env.installer().install("foo")
	assert _prefix_files(env) == []


def test_signature_is_checked_before_extraction(env, monkeypatch):
	env.publish("foo", bad_signature=True)
	called = []
	monkeypatch.setattr("binpm.installer.extract", lambda *a: called.append(a))
	with pytest.raises(IntegrityError):
		env.installer().install("foo")
	assert called == []


def test_corrupt_archive_is_extraction_error(env):
	filename = env.publish("foo")
	data = b"this is not a tarball"
	env.mirror.files[f"foo/{filename}"] = data
	env.mirror.files[f"foo/{filename}.sig"] = env.key.sign(data)
	with pytest.raises(ExtractionError):
		env.installer().install("foo")
	assert env.installer().ledger.names() == []


def test_static_only_drops_shared_libraries(env):
	env.settings = replace(env.settings, static_only=True)
	env.publish("foo", files={"lib/libfoo.a": b"ar", "lib/libfoo.1.dylib": b"dy"}, links={"lib/libfoo.dylib": "libfoo.1.dylib"})
	env.installer().install("foo")
	assert _prefix_files(env) == ["lib/libfoo.a"]


def test_shared_libraries_are_executable(env):
	env.publish("foo", files={"lib/libfoo.1.dylib": b"dy"})
	env.installer().install("foo")
	mode = env.settings.prefix.joinpath("lib", "libfoo.1.dylib").stat().st_mode
	assert mode & 0o111 == 0o111


def test_install_all_cleans_stray_manifest_files(env):
	env.publish("foo", payload=False)
	installer = env.installer()
	installer.install("foo")
	assert (env.settings.prefix / "+CONTENTS").exists()
	env.publish("bar", payload=False)
	assert installer.install_all(["bar"]) is True
	assert _prefix_files(env) == ["bin/bar", "bin/foo"]


def test_install_all_cleans_up_before_a_later_failure(env):
	env.publish("foo", payload=False)
	installer = env.installer()
	with pytest.raises(NotFoundError):
		installer.install_all(["foo", "ghost"])
	assert installer.ledger.names() == ["foo"]
	assert not (env.settings.prefix / "+CONTENTS").exists()
	assert _prefix_files(env) == ["bin/foo"]


def test_install_over_dangling_link_in_prefix(env):
	leftover = env.settings.prefix / "share" / "foo"
	leftover.parent.mkdir(parents=True)
	os.symlink("gone-from-prior-install", leftover)
	env.publish("foo", files={"share/foo/README": b"read me"})
	env.installer().install("foo")
	assert not leftover.is_symlink()
	assert (leftover / "README").read_bytes() == b"read me"


def test_fake_install_rejects_names_with_whitespace(env):
	with pytest.raises(ConfigurationError):
		env.installer().fake_install(["a b"])


def test_install_all_warns_about_installed_names(env, caplog):
	env.publish("foo")
	installer = env.installer()
	installer.install("foo")
	with caplog.at_level(logging.WARNING):
		assert installer.install_all(["foo"]) is False
	assert "foo is already installed" in caplog.text


def test_fake_install_records_without_downloading(env):
	installer = env.installer()
	installer.fake_install(["xcode-tools", "xcode-tools"])
	assert installer.ledger.names() == ["xcode-tools"]
	assert env.mirror.requests == []
	installer.install("xcode-tools")
	assert env.mirror.requests == []


def test_interrupted_download_resumes(env):
	filename = env.publish("foo")
	data = env.mirror.files[f"foo/{filename}"]
	env.settings.cache_dir.mkdir(parents=True)
	(env.settings.cache_dir / (filename + ".part")).write_bytes(data[:10])
	env.installer().install("foo")
	archive_req = [r for r in env.mirror.requests if r.url.path.endswith(".tgz")][0]
	assert archive_req.headers["Range"] == "bytes=10-"
	assert (env.settings.cache_dir / filename).read_bytes() == data
