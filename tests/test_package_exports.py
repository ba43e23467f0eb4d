import importlib


def _read_pyproject_version() -> str:
    import re
    from pathlib import Path

    txt = (Path(__file__).resolve().parents[1] / "pyproject.toml").read_text(encoding="utf-8")
    m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
    assert m, "Could not locate [project].version in pyproject.toml"
    return m.group(1)


def test_convenience_imports_work():
    # Ensure top-level convenience imports are available (regression guard)
    import ogp_gateway

    # Access via attribute (lazy import)
    assert hasattr(ogp_gateway, "OptimisticGateway")
    assert hasattr(ogp_gateway, "create_app")

    # Import directly
    from ogp_gateway import OptimisticGateway, build_gateway_from_env, create_app  # noqa: F401

    # Config and error types also exposed
    from ogp_gateway import ThresholdConfig, OGPError, DependencyError  # noqa: F401

    # Ensure module caching works
    importlib.reload(ogp_gateway)


def test_unknown_attribute_raises():
    import ogp_gateway

    try:
        ogp_gateway.DoesNotExist  # noqa: B018
    except AttributeError as e:
        assert "DoesNotExist" in str(e)
    else:
        raise AssertionError("expected AttributeError")


def test_version_export_matches_pyproject():
    import ogp_gateway

    assert hasattr(ogp_gateway, "__version__")
    assert ogp_gateway.__version__ == _read_pyproject_version()
