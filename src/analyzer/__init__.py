"""Log health analyzer — correlate normalised events into scored findings.

Modules
───────
  device_map — PnP instance ids / PCI locations / SMART wording → labels
  rules      — declarative hint rules and keyword patterns from YAML
  hints      — correlation engine: CanonicalEvent → deduplicated Hint
  metrics    — score, risk grade, root causes, timeline, top-N tables
  reporter   — write JSON report, hints CSV, quarantine CSV
  pipeline   — orchestrate the full flow
  cli        — argparse entry-point
"""
