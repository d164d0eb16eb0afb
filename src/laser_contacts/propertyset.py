"""PropertySet: the attribute-access parameter bag used for model and disease configuration."""

import json
from pathlib import Path

import numpy as np


class PropertySet:
    """A dictionary-like bag of named values with ``.name`` access.

    Model configuration and per-disease parameters are both held in PropertySets.

    Examples
    --------
    Build and read:
        >>> from laser_contacts import PropertySet
        >>> ps = PropertySet({"infect": 1.0, "vac_eff": 0.4})
        >>> ps.infect
        1.0
        >>> ps["vac_eff"]
        0.4

    Combine (``+`` / ``+=`` only add new keys):
        >>> ps += {"xmit_work": 0.0575}

    Override (``<<`` / ``<<=`` only replace existing keys):
        >>> ps <<= {"vac_eff": 1.0}

    Add or override (``|`` / ``|=`` accept anything):
        >>> ps |= {"incubation_length": 3.0, "infect": 0.5}

    Persist:
        >>> ps.save("disease.json")
        >>> PropertySet.load("disease.json") == ps
        True
    """

    def __init__(self, *bags):
        """
        Initialize the PropertySet from zero or more dictionaries or PropertySets.

        Later bags override earlier ones.

        Parameters
        ----------
        *bags : dict or PropertySet
            Sources of key/value pairs. Keys must be strings.
        """

        for bag in bags:
            assert isinstance(bag, (type(self), dict))
            for key, value in _items(bag):
                setattr(self, key, value)

    def to_dict(self):
        """Return a plain dictionary copy, converting nested PropertySets (and lists of them) too."""
        result = {}

        for key, value in self.__dict__.items():
            if isinstance(value, PropertySet):
                result[key] = value.to_dict()
            elif isinstance(value, list):
                result[key] = [item.to_dict() if isinstance(item, PropertySet) else item for item in value]
            else:
                result[key] = value

        return result

    def get(self, key, default=None):
        """Return the value for `key` or `default` if the key is not present."""
        return self.__dict__.get(key, default)

    def save(self, filename):
        """
        Write the PropertySet to `filename` as JSON.

        Parameters:

            filename (str): Destination path.

        Returns:

            None
        """
        with Path(filename).open("w") as file:
            file.write(str(self))

        return

    @staticmethod
    def load(filename):
        """
        Read a PropertySet back from a JSON file written by `save()`.

        Nested objects are returned as nested PropertySets.

        Parameters:

            filename (str): Source path.

        Returns:

            PropertySet: The loaded properties.
        """
        with Path(filename).open("r") as file:
            data = json.load(file)

        return PropertySet(_nest(data))

    def __getitem__(self, key):
        return getattr(self, key)

    def __setitem__(self, key, value):
        setattr(self, key, value)

    def __add__(self, other):
        result = PropertySet(self)
        result += other

        return result

    def __iadd__(self, other):
        """
        Add new keys from `other` (``+=``).

        Raises:

            ValueError: If `other` contains a key already present here.
        """

        assert isinstance(other, (type(self), dict))
        for key, value in _items(other):
            if key in self.__dict__:
                raise ValueError(f"Cannot override existing value for '{key}'.")
            setattr(self, key, value)
        return self

    def __lshift__(self, other):
        result = PropertySet(self)
        result <<= other

        return result

    def __ilshift__(self, other):
        """
        Replace existing values with values from `other` (``<<=``).

        Raises:

            ValueError: If `other` contains a key not present here.
        """

        assert isinstance(other, (type(self), dict))
        for key, value in _items(other):
            if key not in self.__dict__:
                raise ValueError(f"Cannot override missing key '{key}'.")
            setattr(self, key, value)
        return self

    def __or__(self, other):
        result = PropertySet(self)
        result |= other

        return result

    def __ior__(self, other):
        assert isinstance(other, (type(self), dict))
        for key, value in _items(other):
            setattr(self, key, value)
        return self

    def __len__(self):
        return len(self.__dict__)

    def __contains__(self, key):
        return key in self.__dict__

    def __eq__(self, other):
        if not isinstance(other, (type(self), dict)):
            return NotImplemented
        return self.to_dict() == (other.to_dict() if isinstance(other, type(self)) else other)

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), indent=4, cls=NumpyJSONEncoder)

    def __repr__(self) -> str:
        return f"PropertySet({self.to_dict()!s})"


class NumpyJSONEncoder(json.JSONEncoder):
    """JSON encoder that understands NumPy scalars and arrays."""

    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


def _items(bag):
    return (bag.__dict__ if isinstance(bag, PropertySet) else bag).items()


def _nest(value):
    if isinstance(value, dict):
        return PropertySet({key: _nest(item) for key, item in value.items()})
    if isinstance(value, list):
        return [_nest(item) for item in value]
    return value
