#!python
"""CLI for alphalipid.

Loads a rules file, reports fragment rules that cannot be resolved and, if matched fragment intensities are given,
evaluates the rules against them. The CLI holds as little logic as possible so that it behaves the same as
calling the library from a notebook.
"""

import argparse
import json
import logging
import os
from pathlib import Path

import yaml

from alphalipid import __version__
from alphalipid.constants.keys import ConfigKeys

logger = logging.getLogger()

EXIT_CODE_USER_ERROR = 1
EXIT_CODE_WRONG_CLI_PARAM = 126
EXIT_CODE_UNKNOWN_ERROR = 127

REPORT_FILE_NAME = "report.json"
EQUATIONS_FILE_NAME = "equations.tsv"

epilog = "Parameters passed via CLI will overwrite parameters from config file."

parser = argparse.ArgumentParser(
    description="Validate lipid fragmentation rules and evaluate them against matched spectra with alphalipid",
    epilog=epilog,
)
parser.add_argument(
    "--version",
    "-v",
    action="store_true",
    help="Print version and exit",
)
parser.add_argument(
    "--check",
    action="store_true",
    help="Check if package can be imported",
)
parser.add_argument(
    "--rules",
    "--rules-path",
    "-r",
    type=str,
    help="Path to the rules file.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--match",
    "--match-path",
    "-m",
    type=str,
    help="Path to a yaml file with the matched fragment intensities or the centroided peaks of one spectrum.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--output",
    "--output-directory",
    "-o",
    type=str,
    help="Output directory for the log, the report and the events file.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--config",
    "-c",
    type=str,
    help="Path to config yaml file which will be used to update the default config.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--config-dict",
    type=str,
    help="Python dictionary which will be used to update the default config. Keys and string values need to be surrounded by "
    'escaped double quotes, e.g. "{\\"key1\\": \\"value1\\"}".',
    nargs="?",
    default="{}",
)


def _recursive_update(full_dict: dict, update_dict: dict):
    """Recursively update `full_dict` in place with the values of `update_dict`."""
    for key, value in update_dict.items():
        if key in full_dict and isinstance(value, dict) and isinstance(full_dict[key], dict):
            _recursive_update(full_dict[key], value)
        else:
            full_dict[key] = value


def _get_config_from_args(
    args: argparse.Namespace,
) -> tuple[dict, str | None, str | None]:
    """Parse config file from `args.config` if given and update with optional JSON string `args.config_dict`."""

    config = {}
    if args.config is not None:
        with open(args.config) as f:
            config = yaml.safe_load(f) or {}

    if args.config_dict:
        try:
            _recursive_update(config, json.loads(args.config_dict))
        except Exception as e:
            print(f"Could not parse config update: {e}")

    return config, args.config, args.config_dict


def _get_from_args_or_config(
    args: argparse.Namespace, config: dict, *, args_key: str, config_key: str
) -> str:
    """Get a value from command line arguments (key: `args_key`) or config file (key: `config_key`), the former taking precedence."""
    value_from_args = args.__dict__.get(args_key)
    return value_from_args if value_from_args is not None else config.get(config_key)


def _write_outputs(output_directory: str, report, pipeline) -> None:
    with open(os.path.join(output_directory, REPORT_FILE_NAME), "w") as f:
        json.dump(report.to_dict(), f, indent=2)
    report.to_frame().to_csv(
        os.path.join(output_directory, EQUATIONS_FILE_NAME), sep="\t", index=False
    )
    pipeline.log_data("report", report.to_dict())
    logger.info(f"Report written to {Path(output_directory).absolute()}")


def run(*args, **kwargs):
    args, unknown = parser.parse_known_args()

    if unknown:
        print(f"Unknown arguments: {unknown}")
        parser.print_help()
        return EXIT_CODE_WRONG_CLI_PARAM

    if args.version:
        print(f"{__version__}")
        return

    # load modules only here to speed up -v and -h commands
    from alphalipid.evaluation.evaluator import RuleEvaluator
    from alphalipid.evaluation.match import read_match_input
    from alphalipid.evaluation.report import format_debug_report
    from alphalipid.exceptions import CustomError
    from alphalipid.reporting import reporting
    from alphalipid.reporting.logging import print_environment, print_logo
    from alphalipid.rules.parser import load_rules
    from alphalipid.workflow.config import (
        USER_DEFINED,
        Config,
        load_default_config,
    )

    if args.check:
        print(f"{__version__}")
        print("Importing alphalipid works!")
        return

    user_config, config_file_path, extra_config_dict = _get_config_from_args(args)

    rules_path = _get_from_args_or_config(
        args, user_config, args_key="rules", config_key=ConfigKeys.RULES_PATH
    )
    match_path = _get_from_args_or_config(
        args, user_config, args_key="match", config_key=ConfigKeys.MATCH_PATH
    )
    output_directory = _get_from_args_or_config(
        args, user_config, args_key="output", config_key=ConfigKeys.OUTPUT_DIRECTORY
    )

    if rules_path is None:
        parser.print_help()
        print("No rules file specified. Please do so via CL-argument or config.")
        return EXIT_CODE_WRONG_CLI_PARAM

    log_level = user_config.get(ConfigKeys.GENERAL, {}).get(
        ConfigKeys.LOG_LEVEL, "INFO"
    )
    reporting.init_logging(output_directory, log_level)
    print_logo()
    print_environment()

    if config_file_path:
        logger.info(f"User provided config file: {config_file_path}.")
    if extra_config_dict and extra_config_dict != "{}":
        logger.info(f"User provided config dict: {extra_config_dict}.")

    backends = [reporting.LogBackend()]
    if output_directory is not None:
        backends.append(reporting.JSONLBackend(path=output_directory))
    pipeline = reporting.Pipeline(backends)

    try:
        config = load_default_config()
        config.update([Config(user_config, name=USER_DEFINED)], do_print=True)

        with pipeline:
            rule_set = load_rules(rules_path)
            pipeline.log_metric("unresolved_head_fragments", len(rule_set.head.unresolved))
            pipeline.log_metric("unresolved_chain_fragments", len(rule_set.chain.unresolved))
            for catalog in (rule_set.head, rule_set.chain):
                for outcome in catalog.outcomes.values():
                    pipeline.log_string(outcome.message, verbosity="warning")

            if match_path is None:
                logger.progress("No match file given, only the rules were validated.")
                return

            with open(match_path) as f:
                match = read_match_input(
                    yaml.safe_load(f) or {},
                    rule_set,
                    tolerance_ppm=config[ConfigKeys.MATCHING][ConfigKeys.TOLERANCE_PPM],
                )

            evaluation_config = config[ConfigKeys.EVALUATION]
            evaluator = RuleEvaluator(
                base_peak_cutoff=evaluation_config[ConfigKeys.BASE_PEAK_CUTOFF],
                chain_cutoff=evaluation_config[ConfigKeys.CHAIN_CUTOFF],
            )
            report = evaluator.evaluate(rule_set, match)

            pipeline.log_event("verdict", report.verdict)
            for line in format_debug_report(report).splitlines():
                logger.info(line)
            logger.progress(f"Verdict: {'accepted' if report.verdict else 'rejected'}")

            if output_directory is not None:
                _write_outputs(output_directory, report, pipeline)

    except Exception as e:
        if isinstance(e, CustomError):
            exit_code = EXIT_CODE_USER_ERROR
        else:
            import traceback

            logger.info(traceback.format_exc())
            exit_code = EXIT_CODE_UNKNOWN_ERROR

        logger.error(e)
        return exit_code


if __name__ == "__main__" and os.getenv("RUN_MAIN") == "1":
    run()
