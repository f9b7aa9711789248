"""Tests for the command-line interface."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from ruamel.yaml import YAML

from gwmodel.main import configure_logging, main, parse_arguments, run
from gwmodel.model.ec2 import SecurityGroup
from gwmodel.model.elbv2 import Listener, LoadBalancer, TargetGroup

CONFIG = "cluster_name: prod\nvpc_id: vpc-1\n"

INVENTORY = """\
subnets:
  - subnetID: subnet-a
    availabilityZone: us-east-1a
    vpcID: vpc-1
    cidrBlock: 10.0.1.0/24
  - subnetID: subnet-b
    availabilityZone: us-east-1b
    vpcID: vpc-1
    cidrBlock: 10.0.2.0/24
vpcs:
  - vpcID: vpc-1
    ipv4CIDRs: [10.0.0.0/16]
backendSecurityGroup: sg-backend
"""

MANIFESTS = """\
kind: Gateway
metadata: {name: gw, namespace: web, uid: uid-1}
spec:
  listeners:
    - {name: http, port: 80, protocol: HTTP}
---
kind: Service
metadata: {name: svc, namespace: web}
spec:
  ports:
    - {name: http, port: 80, targetPort: 8080, nodePort: 30080}
---
kind: HTTPRoute
metadata: {name: app, namespace: web}
spec:
  parentRefs: [{name: gw}]
  rules:
    - backendRefs: [{name: svc, port: 80}]
"""


class TestParseArguments:
    def test_required_and_repeatable(self) -> None:
        args = parse_arguments(
            [
                "-m",
                "a.yaml",
                "-m",
                "b.yaml",
                "-i",
                "inv.yaml",
                "-c",
                "cfg.yaml",
                "-g",
                "web/gw",
            ]
        )
        assert args.manifests == [Path("a.yaml"), Path("b.yaml")]
        assert args.inventory == Path("inv.yaml")
        assert args.gateway == "web/gw"
        assert args.output_file is None
        assert args.debug is False
        assert args.verbose is False

    def test_output_file_and_flags(self) -> None:
        args = parse_arguments(
            "-m m.yaml -i i.yaml -c c.yaml -g web/gw --debug -v out.yaml".split()
        )
        assert args.output_file == Path("out.yaml")
        assert args.debug is True
        assert args.verbose is True

    def test_gateway_is_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_arguments(["-m", "m.yaml", "-i", "i.yaml", "-c", "c.yaml"])


class TestConfigureLogging:
    @pytest.mark.parametrize(
        "debug, verbose, level",
        [
            (True, False, logging.DEBUG),
            (False, True, logging.INFO),
            (False, False, logging.WARNING),
        ],
    )
    def test_levels(self, monkeypatch, debug: bool, verbose: bool, level: int) -> None:
        calls: list[dict] = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
        configure_logging(debug=debug, verbose=verbose)
        assert calls[0]["level"] == level
        assert calls[0]["force"] is True


class TestRun:
    @pytest.fixture
    def files(self, tmp_path: Path) -> dict[str, Path]:
        paths = {
            "config": tmp_path / "config.yaml",
            "inventory": tmp_path / "inventory.yaml",
            "manifests": tmp_path / "manifests.yaml",
        }
        paths["config"].write_text(CONFIG, encoding="utf-8")
        paths["inventory"].write_text(INVENTORY, encoding="utf-8")
        paths["manifests"].write_text(MANIFESTS, encoding="utf-8")
        return paths

    def _argv(self, files: dict[str, Path], gateway: str = "web/gw") -> list[str]:
        return [
            "-m",
            str(files["manifests"]),
            "-i",
            str(files["inventory"]),
            "-c",
            str(files["config"]),
            "-g",
            gateway,
        ]

    def test_stack_printed_to_stdout(self, files, capsys) -> None:
        assert run(parse_arguments(self._argv(files))) == 0

        data = YAML(typ="safe").load(capsys.readouterr().out)
        assert data["stack"]["id"] == "web/gw"
        resources = data["stack"]["resources"]
        for kind in (SecurityGroup.kind, LoadBalancer.kind, TargetGroup.kind):
            assert len(resources[kind]) == 1, kind
        (listener,) = resources[Listener.kind].values()
        assert listener["port"] == 80
        assert data["backendSecurityGroupAllocated"] is True

    def test_stack_written_to_file(self, files, tmp_path: Path) -> None:
        output = tmp_path / "out" / "stack.yaml"
        assert run(parse_arguments(self._argv(files) + [str(output)])) == 0
        data = YAML(typ="safe").load(output.read_text(encoding="utf-8"))
        assert data["stack"]["id"] == "web/gw"

    def test_unknown_gateway(self, files, caplog) -> None:
        assert run(parse_arguments(self._argv(files, "web/absent"))) == 1
        assert "Input file error" in caplog.text

    def test_invalid_config(self, files) -> None:
        files["config"].write_text("cluster_name: prod\n", encoding="utf-8")
        assert run(parse_arguments(self._argv(files))) == 2

    def test_failed_lookup(self, files, caplog) -> None:
        files["inventory"].write_text(
            INVENTORY.replace("backendSecurityGroup: sg-backend\n", ""),
            encoding="utf-8",
        )
        assert run(parse_arguments(self._argv(files))) == 3
        assert "Lookup failed" in caplog.text

    def test_unwritable_output(self, files) -> None:
        output = files["config"] / "stack.yaml"
        assert run(parse_arguments(self._argv(files) + [str(output)])) == 5

    def test_main_exits_with_run_status(self, files, monkeypatch) -> None:
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: None)
        with pytest.raises(SystemExit) as exc_info:
            main(self._argv(files, "web/absent"))
        assert exc_info.value.code == 1
