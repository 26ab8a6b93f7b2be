"""
sharebench - cold/warm file-share throughput measurement.

Package layout:
    sharebench/
    ├── config.py         # RunConfiguration, settings.json + env overrides
    ├── env_loader.py     # .sbenv / .sbenv.local loader
    ├── exceptions.py     # Error taxonomy
    ├── logging_utils.py  # JSON logging helpers
    ├── unc.py            # \\\\host\\share path parser
    ├── payload.py        # Random payload provisioner
    ├── drain.py          # TCP drain barrier (psutil)
    ├── run_lock.py       # Host-scoped run lock marker
    ├── warm_state.py     # Cold-run selections persisted for warm runs
    ├── probe.py          # Cold/warm throughput probe state machine
    ├── orchestrator.py   # Passes x targets x {cold, warm}
    ├── sample_log.py     # CSV sample log (append-only)
    ├── report.py         # HTML report rendering (pandas)
    ├── notify.py         # SMTP report dispatch
    └── run_speedtest.py  # CLI entrypoint
"""

__version__ = "1.0.0"
