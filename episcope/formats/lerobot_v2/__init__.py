"""LeRobot v2.x layout: one parquet file per episode, metadata in JSONL."""
