"""
Job scheduling core: persisted cron job configuration, hot reconfiguration,
overlap protection and execution tracking on top of APScheduler.
"""
