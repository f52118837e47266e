"""
   Copyright 2015 Samuel Curley

   Licensed under the Apache License, Version 2.0 (the "License");
   you may not use this file except in compliance with the License.
   You may obtain a copy of the License at

       http://www.apache.org/licenses/LICENSE-2.0

   Unless required by applicable law or agreed to in writing, software
   distributed under the License is distributed on an "AS IS" BASIS,
   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
   See the License for the specific language governing permissions and
   limitations under the License.
"""
from . import predicates, schema
from .client import ClientBuilder, MainClient, NewClient
from .encoded_key import EncodedKey, EncodedKeyBuilder
from .predicates import ColumnRangePredicate
from .schema import ColumnSchema, Schema
from .session import AUTO_FLUSH_SYNC, MANUAL_FLUSH

__version__ = '0.1.0'
