import main


def test_help_exits_cleanly():
    assert main.main(["--help"]) == main.EXIT_OK


def test_missing_input_argument_is_a_usage_error():
    assert main.main([]) == main.EXIT_USAGE


def test_missing_file_is_a_usage_error(tmp_path):
    assert main.main(["--input", str(tmp_path / "missing.jpg")]) == main.EXIT_USAGE


def test_unsupported_extension_is_a_usage_error(tmp_path):
    path = tmp_path / "card.gif"
    path.write_bytes(b"GIF89a")

    assert main.main(["--input", str(path), "--quiet"]) == main.EXIT_USAGE


def test_arguments_are_parsed():
    args = main.parse_arguments(["-i", "license.jpg", "-o", "out.json", "-e", "easyocr", "--debug"])

    assert args.input == "license.jpg"
    assert args.output == "out.json"
    assert args.engine == "easyocr"
    assert args.debug
