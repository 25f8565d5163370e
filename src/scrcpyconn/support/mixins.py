def quote(val):
    return "'" + str(val) + "'" if val is not None else "None"


class StringerMixin:

    def __str__(self):
        """
        outputs the class name and the object dictionary in key sorted order.
        Leading underscores are stripped from the keys so that read-only properties
        backed by private attributes print under their public name.
        """
        return type(self).__name__ + ':' + self._sorted_items_string()

    def _sorted_items_string(self):
        return "{" + ", ".join([("'" + str(key).lstrip('_')) + "'" + ": " + (quote(val))
                                for key, val in sorted(self.__dict__.items())]) + "}"


class CommonEqualityMixin(object):
    """ equality for value objects, by comparing the instance dictionaries. """

    def __eq__(self, other):
        return hasattr(other, '__dict__') and isinstance(other, self.__class__) \
            and self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not self.__eq__(other)
