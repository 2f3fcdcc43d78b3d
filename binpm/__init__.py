# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
`binpm`: installs signed, prebuilt binary packages into a private prefix.

Pinned boundary:
- network access goes through `binpm.fetch` only.
- nothing is extracted before its signature has been checked against the
  pinned trust anchor (`binpm.trust`, `binpm.verify`).
"""
