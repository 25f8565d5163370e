import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

from scrcpyconn.errors import ConfigError
from scrcpyconn.params import PortRange, ServerParams

# The default extension for configuration files
config_extension = '.cfg'

# the name of the configuration shipped with this package
default_config_name = 'scrcpyconn'

# the section holding the ServerParams values
server_section = 'server'


def config_flavor(name, flavor=None):
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory=None):
    """
    Determines the location of a config file. Defaults to the directory of this module.
    """
    directory = directory if directory is not None else os.path.dirname(os.path.abspath(__file__))
    return os.path.join(directory, name + config_extension)


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def config_flavor_file(name, directory=None, subpart=None) -> ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name. A missing file gives an empty configuration.
    """
    file = config_filename(config_flavor(name, subpart), directory)
    return load_config_file_base(file, False)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def load_config(name=default_config_name, directory=None, user_directory='~'):
    """
        Loads all the configuration files that relate to the given name.
        Configurations are merged in this order, later ones overriding earlier ones:
        - the default specialization
        - the platform specialization
        - the user override, in the home directory
        - the base configuration
        The result is validated against the "schema" specialization, which converts
        the values to their types and supplies the defaults.
    :return: the validated ConfigObj
    :raises ConfigObjError: if the configuration does not validate
    """
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    user_config = load_config_file_base(os.path.join(os.path.expanduser(user_directory),
                                                     name + config_extension), must_exist=False)
    local_config = config_flavor_file(name, directory)

    schema = config_filename(config_flavor(name, 'schema'), directory)
    if not os.path.exists(schema):
        schema = config_filename(config_flavor(name, 'schema'))
    config = ConfigObj(configspec=schema if os.path.exists(schema) else None)
    config.merge(default_config)
    config.merge(platform_config)
    config.merge(user_config)
    config.merge(local_config)

    if config.configspec is not None:
        result = config.validate(Validator(), preserve_errors=True)
        if result is not True:
            failed = ['.'.join(sections + [key or '']) for sections, key, _ in flatten_errors(config, result)]
            raise ConfigObjError("the config file %s failed validation %s" % (name, ', '.join(failed)))
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:        An iterable that lists the names of the sections to resolve
    :return: The configuration section identified by the path, or None
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return
    return conf


def apply_conf(conf: Section, target):
    """
    Sets the attributes of target that have the same name as the items in the configuration.
    """
    for k, v in conf.items():
        if hasattr(target, k):
            setattr(target, k, v)


def server_params_from_conf(conf: Section) -> ServerParams:
    """
    Builds the server parameters from a validated [server] section.
    Unknown keys are ignored, missing keys keep the ServerParams defaults.
    :raises ConfigError: for an invalid port range
    """
    params = ServerParams()
    values = dict(conf)
    port_range = values.pop('port_range', None)
    apply_conf(values, params)
    if port_range is not None:
        params.port_range = PortRange.parse(port_range)
    return params


def load_server_params(name=default_config_name, directory=None, user_directory='~') -> ServerParams:
    """
    Loads the server parameters from the configuration files.
    :raises ConfigError: if the configuration is invalid
    """
    try:
        config = load_config(name, directory, user_directory)
    except ConfigObjError as e:
        raise ConfigError(str(e)) from e
    conf = fetch_conf_path(config, [server_section])
    return server_params_from_conf(conf) if conf is not None else ServerParams()
