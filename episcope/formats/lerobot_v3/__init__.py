"""LeRobot v3.0 layout: many episodes per file, metadata in parquet."""
