"""Pure domain logic: version identifiers, object keys, profiles and errors."""
