from annoku.overlay import PORT_PLACEHOLDER, build_overlay_script


def test_overlay_script_is_bound_to_port() -> None:
    script = build_overlay_script(9555)
    assert PORT_PLACEHOLDER not in script
    assert "http://127.0.0.1:9555" in script
    assert script.lstrip().startswith("(function")
    assert "/annotations/send" in script
