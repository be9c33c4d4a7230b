import json
import os

import numpy as np
import pytest

import hpheat.main as driver
from hpheat.config import DEFAULT_MESH_PATH, RunConfig
from hpheat.errors import ConfigError, MeshIOError
from hpheat.fea.post.linearizer import Orderizer
from hpheat.fea.pre.mesh_reader import MeshReaderXML


def quiet_config(**kwargs) -> RunConfig:
    kwargs.setdefault("interactive_view", False)
    kwargs.setdefault("num_threads", 1)
    return RunConfig(**kwargs)


def test_run_writes_vtk_output(tmp_path):
    result = driver.run(quiet_config(vtk_output=True, output_dir=str(tmp_path / "out")))

    assert result.success
    assert result.error is None
    assert result.num_dofs == result.vertex_functions + result.edge_functions + result.bubble_functions
    assert result.sln_vector.shape == (result.num_dofs,)
    assert np.all(np.isfinite(result.sln_vector))
    assert [os.path.basename(path) for path in result.output_files] == ["sln.vtk", "mesh.vtk", "ord.vtk"]
    assert all(os.path.isfile(path) for path in result.output_files)


def test_run_cycles_element_orders():
    result = driver.run(quiet_config())
    orders = list(result.space.get_element_orders().values())
    assert orders[:5] == [2, 3, 4, 1, 2]
    assert result.solution.get_pt_value(0.5, -0.5) > 20.0


def test_run_saves_loaded_mesh(tmp_path):
    path = tmp_path / "saved.xml"
    driver.run(quiet_config(mesh_save_path=str(path), p_init=1, cycle_element_orders=False))
    saved = MeshReaderXML().load(path)
    original = MeshReaderXML().load(DEFAULT_MESH_PATH)
    assert saved.get_num_vertices() == original.get_num_vertices()
    assert saved.get_num_active_elements() == original.get_num_active_elements()


def test_views_are_shown_around_the_solve(monkeypatch):
    calls = []
    monkeypatch.setattr(driver, "_show_orders", lambda space: calls.append("orders"))
    monkeypatch.setattr(driver, "_show_solution", lambda sln: calls.append("solution"))

    result = driver.run(quiet_config(interactive_view=True))
    assert result.success
    assert calls == ["orders", "solution"]


def test_failed_output_step_does_not_stop_the_run(monkeypatch, tmp_path):
    def fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(Orderizer, "save_mesh_vtk", fail)
    result = driver.run(quiet_config(vtk_output=True, output_dir=str(tmp_path)))
    assert result.success
    assert [os.path.basename(path) for path in result.output_files] == ["sln.vtk"]


def test_solver_failure_is_reported_in_result():
    result = driver.run(quiet_config(solver_type="cg", max_iterations=1))
    assert not result.success
    assert result.error
    assert result.sln_vector is None
    assert result.num_dofs > 0


def test_missing_mesh_raises(tmp_path):
    with pytest.raises(MeshIOError):
        driver.run(quiet_config(mesh_path=str(tmp_path / "missing.xml")))


def test_main_exit_status(tmp_path, capsys):
    assert driver.main(["--no-view", "--threads", "1"]) == 0
    assert driver.main(["--no-view", "--mesh", str(tmp_path / "missing.xml")]) == 1
    assert driver.main(["--no-view", "--order", "0"]) == 2

    config_path = tmp_path / "cg.json"
    config_path.write_text(json.dumps({"solver_type": "cg", "max_iterations": 1, "num_threads": 1}))
    assert driver.main(["--no-view", "--config", str(config_path)]) == 0
    assert "did not converge" in capsys.readouterr().out
    assert driver.main(["--no-view", "--strict", "--config", str(config_path)]) == 1


def test_build_config_overrides(tmp_path):
    args = driver.parse_args([
        "--mesh", "other.msh", "--order", "3", "--refinements", "2", "--solver", "cg",
        "--vtk", "--no-view", "--output-dir", str(tmp_path), "--log-level", "DEBUG", "--strict",
    ])
    config = driver.build_config(args)
    assert config.mesh_path == "other.msh"
    assert (config.p_init, config.init_ref_num, config.solver_type) == (3, 2, "cg")
    assert config.vtk_output and not config.interactive_view and config.strict_exit_status
    assert config.output_dir == str(tmp_path)
    assert config.log_level == "DEBUG"

    defaults = driver.build_config(driver.parse_args([]))
    assert defaults == RunConfig()


def test_run_config_from_dict_and_file(tmp_path):
    config = RunConfig.from_dict({"p_init": 3, "volume_heat_source": 100.0})
    assert config.p_init == 3
    assert RunConfig.from_dict(config.to_dict()) == config

    with pytest.raises(ConfigError):
        RunConfig.from_dict({"unknown": 1})
    with pytest.raises(ConfigError):
        RunConfig.from_dict({"p_init": 11})
    with pytest.raises(ConfigError):
        RunConfig.from_dict({"conductivities": {"Aluminum": -1.0}})
    with pytest.raises(ConfigError):
        RunConfig(solver_type="gmres")

    path = tmp_path / "run.json"
    path.write_text(json.dumps({"mesh_path": "meshes/domain.xml"}))
    assert RunConfig.from_file(str(path)).mesh_path == str(tmp_path / "meshes" / "domain.xml")

    path.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        RunConfig.from_file(str(path))
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        RunConfig.from_file(str(path))
    with pytest.raises(ConfigError):
        RunConfig.from_file(str(tmp_path / "missing.json"))


def test_main_prints_dof_counts(capsys):
    assert driver.main(["--no-view", "--threads", "1", "--log-level", "WARNING"]) == 0
    counts = [int(token) for token in capsys.readouterr().out.split()]
    assert len(counts) == 4
    num_dofs, vertex, edge, bubble = counts
    assert num_dofs == vertex + edge + bubble > 0


def test_non_integer_values_are_invalid_configuration(tmp_path):
    with pytest.raises(ConfigError):
        RunConfig.from_dict({"p_init": 2.5})
    with pytest.raises(ConfigError):
        RunConfig(num_threads=True)

    config_path = tmp_path / "fractional.json"
    config_path.write_text(json.dumps({"p_init": 2.5}))
    assert driver.main(["--no-view", "--config", str(config_path)]) == 2
