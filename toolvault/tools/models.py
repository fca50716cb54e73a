# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tool descriptor models.

Descriptors come from the catalog and are read-only to the orchestrator.
A descriptor without a ``code_ref`` is still a valid descriptor; it is only
rejected when someone tries to execute it.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ToolParameter(BaseModel):
    """Declared input parameter"""
    name: str
    type: str = "string"  # string, number, integer, boolean, array, object, geojson
    required: bool = False
    description: Optional[str] = None


class ToolOutput(BaseModel):
    """Declared output field"""
    name: str
    type: Optional[str] = None
    description: Optional[str] = None


class ToolDescriptor(BaseModel):
    """Catalog entry for an executable tool"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: Optional[str] = None
    code_ref: Optional[str] = Field(default=None, alias="module")  # "package.module:function"
    inputs: List[ToolParameter] = []
    outputs: List[ToolOutput] = []
    version: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None

    @property
    def required_inputs(self) -> List[str]:
        return [param.name for param in self.inputs if param.required]
