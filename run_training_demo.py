#!/usr/bin/env python3
"""
Train a forecast model on synthetic records through the job orchestrator.

Usage:
    python run_training_demo.py [model_name] [--environment ENV] [--config PATH]
"""

import argparse
import json
import sys
from pathlib import Path

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from model_training import create_orchestrator
from model_training.core.dataset import generate_synthetic_records


def main() -> bool:
    """Run one training job and print its outcome."""
    parser = argparse.ArgumentParser(description="Run a demo training job")
    parser.add_argument("model_name", nargs="?", default="career-trajectory")
    parser.add_argument("--environment", default="development")
    parser.add_argument("--config", default=None)
    parser.add_argument("--records", type=int, default=500)
    parser.add_argument("--epochs", type=int, default=20)
    parser.add_argument("--optimize", action="store_true")
    parser.add_argument("--folds", type=int, default=0)
    args = parser.parse_args()

    try:
        orchestrator = create_orchestrator(args.config, args.environment)
    except Exception as e:
        print(f"Failed to initialise orchestrator: {e}")
        return False

    records = generate_synthetic_records(args.records)
    options = {
        "epochs": args.epochs,
        "optimize_hyperparameters": args.optimize,
        "max_trials": 20,
    }
    if args.optimize:
        options["hyperparameter_config"] = {}
    if args.folds:
        options["cross_validation"] = {"folds": args.folds}

    with orchestrator:
        job_id = orchestrator.start_training(args.model_name, records, options)
        print(f"Started job {job_id} for {args.model_name}")

        job = orchestrator.wait_for_job(job_id)

        print(json.dumps(job.to_dict(), indent=2, default=str))
        print(json.dumps(
            [v.to_dict() for v in orchestrator.get_model_versions(args.model_name)],
            indent=2, default=str))

    return job.status.value == "completed"


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
