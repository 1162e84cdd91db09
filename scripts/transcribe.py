import argparse
import json
import logging
import sys

from f0notes.pipeline.config import load_config
from f0notes.pipeline.errors import PipelineError
from f0notes.pipeline.instrumentation import PipelineLogger
from f0notes.pipeline.stage_d import notes_to_dicts
from f0notes.pipeline.transcribe import transcribe

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Transcribe monophonic audio into MIDI notes")
    parser.add_argument("--audio_path", required=True, help="Path to input audio file")
    parser.add_argument("--config", default=None, help="JSON file with per-stage config overrides")
    parser.add_argument("--output_midi", default="output.mid", help="Output MIDI path")
    parser.add_argument("--output_json", default=None, help="Optional JSON note list path")
    parser.add_argument("--log_dir", default=None, help="Write JSONL run logs under this directory")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    pipeline_logger = PipelineLogger(base_dir=args.log_dir) if args.log_dir else None

    try:
        config = load_config(args.config)
        result = transcribe(args.audio_path, config=config, pipeline_logger=pipeline_logger)
    except (PipelineError, ValueError) as e:
        logger.error("Transcription failed: %s", e)
        return 1
    finally:
        if pipeline_logger:
            pipeline_logger.finalize()

    if result.midi_bytes:
        with open(args.output_midi, "wb") as f:
            f.write(result.midi_bytes)
        logger.info("MIDI written to %s", args.output_midi)

    if args.output_json:
        payload = {"notes": notes_to_dicts(result.notes), "metrics": result.metrics, "timing": result.timing}
        with open(args.output_json, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        logger.info("Notes written to %s", args.output_json)

    return 0


if __name__ == "__main__":
    sys.exit(main())
