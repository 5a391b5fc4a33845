import json
import logging

import pytest

from geomopt.config import OptionTree
from geomopt.errors import ConfigurationError
from geomopt.logging_config import DRIVER_LOGGER, SOLVER_LOGGER, setup_logging


def test_nested_and_flat_lookup():
    options = OptionTree({"weight": {"smooth": {"value": 2}}, "abs_eps.value": "1e-3"})
    assert options.get_float("weight.smooth.value") == 2.0
    assert options.get_float("abs_eps.value") == 1e-3
    assert "weight.smooth.value" in options
    assert "weight.align.value" not in options


def test_missing_option():
    options = OptionTree({})
    with pytest.raises(ConfigurationError) as info:
        options.get_float("weight.smooth.value")
    assert isinstance(info.value, KeyError)
    assert "weight.smooth.value" in str(info.value)
    assert options.get_str("lins.type.value", "simplicial") == "simplicial"


def test_type_conversion():
    options = OptionTree({"a": 3.0, "b": 1.5, "c": "yes", "d": "abc", "e": {"f": 1}})
    assert options.get_int("a") == 3
    with pytest.raises(ConfigurationError):
        options.get_int("b")
    assert options.get("c", bool) is True
    with pytest.raises(ConfigurationError):
        options.get_float("d")
    with pytest.raises(ConfigurationError):
        options.get_float("e")


def test_from_file(tmp_path):
    path = tmp_path / "options.json"
    path.write_text(json.dumps({"lbfgs": {"maxits": {"value": 25}}}), encoding="utf-8")
    assert OptionTree.from_file(path).get_int("lbfgs.maxits.value") == 25

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        OptionTree.from_file(bad)
    with pytest.raises(ConfigurationError):
        OptionTree.from_file(tmp_path / "missing.json")


def test_setup_logging_does_not_stack_handlers(tmp_path):
    setup_logging(logging.DEBUG)
    logger = setup_logging(logging.INFO, log_file=str(tmp_path / "run.log"))
    assert logger.name == "geomopt"
    assert len(logger.handlers) == 2
    assert (tmp_path / "run.log").exists()
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_solver_loggers_have_their_own_level(tmp_path):
    log_file = tmp_path / "run.log"
    logger = setup_logging(logging.INFO, log_file=str(log_file), solver_level=logging.DEBUG)
    try:
        assert logging.getLogger(f"{SOLVER_LOGGER}.lbfgs").isEnabledFor(logging.DEBUG)
        assert not logging.getLogger(f"{DRIVER_LOGGER}.polycube").isEnabledFor(logging.DEBUG)

        logging.getLogger(f"{SOLVER_LOGGER}.lbfgs").debug("line search reset")
        logging.getLogger(f"{DRIVER_LOGGER}.polycube").debug("hidden detail")
        for handler in logger.handlers:
            handler.flush()
        text = log_file.read_text(encoding="utf-8")
        assert "geomopt.solvers.lbfgs - DEBUG - line search reset" in text
        assert "hidden detail" not in text

        setup_logging(logging.INFO)
        assert not logging.getLogger(f"{SOLVER_LOGGER}.lbfgs").isEnabledFor(logging.DEBUG)
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
