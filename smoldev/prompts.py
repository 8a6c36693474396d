"""
Prompt templates for the three generation stages

Templates use str.format placeholders; literal braces are doubled.
"""

import json
from typing import Any, Dict, Sequence


FILE_PATHS_PROMPT = """
You are an AI developer who is trying to write a program that will generate code for the user based on their intent.

When given their intent, create a complete, exhaustive list of filepaths that the user would write to make the program. You should include a Makefile and a Dockerfile.

Don't generate package lock files for any language.

Your response must be JSON formatted and contain the following keys:
"filepaths": a list of strings that are the filepaths that the user would write to make the program.
"reasoning": a list of strings that explain your chain of thought (include 5-10)

Do not emit any other output."""


SHARED_DEPENDENCIES_PROMPT = """
You are an AI developer who is trying to write a program that will generate code for the user based on their intent.

In response to the user's prompt:

---
the app is: {prompt}
---

the files we have decided to generate are: {filepaths_string}

Now that we have a list of files, we need to understand what dependencies they share.
Please name and briefly describe what is shared between the files we are generating, including exported variables, data schemas, id names of every DOM elements that javascript functions will use, message names, and function names.

Your response must be JSON formatted and contain the following keys:
"shared_dependencies": a the list of shared dependencies, include a symbol name, a description, and the set of symbols or files. use "name", "description", and "symbols" as the keys.
"reasoning": a list of strings that explain your chain of thought (include 5-10).
The symbols should be a map of symbol name to symbol description. ("symbols": {{"(symbol_name)": "(symbol_description)"}})

Your output should be JSON should look like:
{target_json}

Do not emit any other output."""


CODE_GENERATION_SYSTEM_PROMPT = """
You are an AI developer who is trying to write a program that will generate code for the user based on their intent.

the app is: {prompt}

the files we have decided to generate are: {filepaths_string}

the shared dependencies (like filenames and variable names) we have decided on are: {shared_dependencies}

only write valid code for the given filepath and file type, and return only the code.
do not add any other explanation, only return valid code for that file type."""


CODE_GENERATION_PROMPT = """
We have broken up the program into per-file generation.
Now your job is to generate only the code for the file {filename}.
Make sure to have consistent filenames if you reference other files we are also generating.

Remember that you must obey 3 things:
   - you are generating code for the file {filename}
   - do not stray from the names of the files and the shared dependencies we have decided on
   - MOST IMPORTANT OF ALL - the purpose of our app is {prompt} - every line of code you generate must be valid code. Do not include code fences in your response, for example

Bad response:
```javascript
console.log("hello world")
```

Good response:
console.log("hello world")

Begin generating the specified file now (with surrounding text):
"""


# Example of the dependency response shape, embedded in the prompt
SHARED_DEPENDENCIES_TARGET: Dict[str, Any] = {
    "shared_dependencies": [
        {
            "name": "example symbol",
            "description": "example description",
            "symbols": {},
        }
    ],
    "reasoning": [],
}


def format_file_paths_prompt() -> str:
    return FILE_PATHS_PROMPT


def format_shared_dependencies_prompt(prompt: str, filepaths: Sequence[str]) -> str:
    return SHARED_DEPENDENCIES_PROMPT.format(
        prompt=prompt,
        filepaths_string=json.dumps(list(filepaths)),
        target_json=json.dumps(SHARED_DEPENDENCIES_TARGET),
    )


def format_code_generation_prompts(
    prompt: str,
    filepaths: Sequence[str],
    shared_dependencies: str,
    filename: str,
) -> Dict[str, str]:
    """Return {"system": ..., "user": ...} for a single file"""
    inputs = {
        "prompt": prompt,
        "filepaths_string": json.dumps(list(filepaths)),
        "shared_dependencies": shared_dependencies,
        "filename": filename,
    }
    return {
        "system": CODE_GENERATION_SYSTEM_PROMPT.format(**inputs),
        "user": CODE_GENERATION_PROMPT.format(**inputs),
    }
