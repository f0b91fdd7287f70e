import numpy as np
import pandas as pd
import pytest

import mpiforest.cli as cli
from mpiforest.forest import RandomForestParameters


def _csv(tmp_path, data):
    path = tmp_path / "table.csv"
    columns = [f"f{i}" for i in range(data.shape[1] - 1)] + ["label"]
    pd.DataFrame(data, columns=columns).to_csv(path, index=False)
    return str(path)


def test_parse_args_defaults():
    config = cli.parse_args(["data.csv"])
    assert config == cli.RunConfig(csv_file="data.csv", rows=0, cols=0, log_level=1,
                                   seed=None, search=False)


def test_parse_args_options():
    config = cli.parse_args(["data.csv", "--num_rows", "10", "--num_cols", "3",
                             "--log_level=2", "--seed", "0", "--search"])
    assert (config.rows, config.cols, config.log_level, config.seed, config.search) == (10, 3, 2, 0, True)


def test_default_run_prints_accuracy_and_time(tmp_path, capsys, solo, table):
    path = _csv(tmp_path, table)
    assert cli.main([path, "--seed", "3", "--log_level", "2"], comm=solo) == 0
    out = capsys.readouterr().out
    assert "cross validation accuracy:" in out
    assert "(time taken:" in out


def test_run_is_reproducible_across_invocations(tmp_path, capsys, solo, table):
    path = _csv(tmp_path, table)
    cli.main([path, "--seed", "5", "--log_level", "0"], comm=solo)
    first = capsys.readouterr().out.splitlines()[0]
    cli.main([path, "--seed", "5", "--log_level", "0"], comm=solo)
    second = capsys.readouterr().out.splitlines()[0]
    assert first == second


def test_run_over_three_ranks(tmp_path, capsys, group, table):
    path = _csv(tmp_path, table)
    argv = [path, "--seed", "1", "--num_rows", "100", "--num_cols", "3", "--log_level", "0"]
    assert group(3, lambda comm: cli.main(argv, comm=comm)) == [0, 0, 0]
    out = capsys.readouterr().out
    # only rank 0 reports
    assert out.count("cross validation accuracy:") == 1


def test_search_mode(monkeypatch, tmp_path, capsys, solo, table):
    small = [RandomForestParameters(n_estimators=2, max_depth=d, min_samples_leaf=2, max_features=2)
             for d in (2, 3)]
    real_search = cli.hyperparameter_search
    monkeypatch.setattr(cli, "hyperparameter_search",
                        lambda data, comm, **kw: real_search(data, comm, grid=small, **kw))
    path = _csv(tmp_path, table)
    assert cli.main([path, "--search", "--seed", "2", "--log_level", "0"], comm=solo) == 0
    out = capsys.readouterr().out
    assert "[hyperparameter search] run complete" in out
    assert "best_n_estimators (trees): 2" in out


def test_missing_file_aborts(tmp_path, solo):
    with pytest.raises(SystemExit) as exc:
        cli.main([str(tmp_path / "missing.csv")], comm=solo)
    assert exc.value.code == 1


def test_non_binary_labels_abort(tmp_path, solo):
    data = np.array([[1.0, 0.0], [2.0, 3.0]])
    with pytest.raises(SystemExit) as exc:
        cli.main([_csv(tmp_path, data)], comm=solo)
    assert exc.value.code == 1


def test_allocation_failure_reports_size_and_aborts(monkeypatch, tmp_path, caplog, solo, table):
    path = _csv(tmp_path, table)

    def exhausted(*args, **kwargs):
        raise MemoryError()

    monkeypatch.setattr(cli, "load_csv", exhausted)
    with caplog.at_level("ERROR", logger="mpiforest.cli"):
        with pytest.raises(SystemExit) as exc:
            cli.main([path, "--num_rows", "100", "--num_cols", "3"], comm=solo)
    assert exc.value.code == 1
    assert "100 x 3 float64 values (2400 bytes)" in caplog.text


def test_missing_positional_argument_aborts(solo):
    with pytest.raises(SystemExit) as exc:
        cli.main([], comm=solo)
    assert exc.value.code == 2
