"""Strict field types shared by the level schema.

Level documents come from JSON, so the schema accepts values only of the
JSON type they are declared with: no "12" for a number, no true for a
count, and no NaN or Infinity anywhere.
"""

from typing import Annotated

from pydantic import AllowInfNan, Strict, StrictInt, StrictStr, StringConstraints

Name = Annotated[str, StringConstraints(strict=True, min_length=1)]
Text = StrictStr
Number = Annotated[float, Strict(), AllowInfNan(False)]
Count = StrictInt
