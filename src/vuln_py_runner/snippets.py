"""Ready-made snippets for demos and vulnerability tests."""

TEST_SNIPPETS = {
    "hello": 'print("Hello, World!")',
    "math": (
        "import math\n"
        "result = math.sqrt(16)\n"
        'print(f"Square root of 16 is: {result}")\n'
    ),
    "loop": (
        "for i in range(5):\n"
        '    print(f"Count: {i}")\n'
    ),
    "error": (
        "# This will cause a deliberate error\n"
        "print(undefined_variable)\n"
    ),
    "dangerous": {
        "file_read": (
            "import os\n"
            "print(os.listdir('.'))\n"
        ),
        "subprocess": (
            "import subprocess\n"
            "result = subprocess.run(['ls', '-la'], capture_output=True, text=True)\n"
            "print(result.stdout)\n"
        ),
        "exec": "exec('print(\"Code executed via exec!\")')\n",
        "eval": (
            "result = eval('2 + 2')\n"
            'print(f"Eval result: {result}")\n'
        ),
    },
}
