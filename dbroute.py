"""
Low-level definitions for DBRoute: protocol constants, errors, name
validation, interface/method/signal descriptors, per-class interface
tables, an in-memory message representation and introspection-XML
parsing. Nothing here talks to a transport; see the relay module for
dispatching and proxying on top of these.
"""
#+
# Copyright 2017 the DBRoute contributors.
# Licensed under the GNU Lesser General Public License v2.1 or later.
#-

import re
import logging
from xml.sax.saxutils import \
    quoteattr
import xml.etree.ElementTree as XMLElementTree

_logger = logging.getLogger("dbroute")

class DBUS :
    "useful definitions adapted from the D-Bus includes."

    # from dbus-protocol.h:

    # Primitive types
    TYPE_BYTE = 'y' # 8-bit unsigned integer
    TYPE_BOOLEAN = 'b' # boolean
    TYPE_INT16 = 'n' # 16-bit signed integer
    TYPE_UINT16 = 'q' # 16-bit unsigned integer
    TYPE_INT32 = 'i' # 32-bit signed integer
    TYPE_UINT32 = 'u' # 32-bit unsigned integer
    TYPE_INT64 = 'x' # 64-bit signed integer
    TYPE_UINT64 = 't' # 64-bit unsigned integer
    TYPE_DOUBLE = 'd' # 8-byte double in IEEE 754 format
    TYPE_STRING = 's' # UTF-8 encoded, nul-terminated Unicode string
    TYPE_OBJECT_PATH = 'o' # D-Bus object path
    TYPE_SIGNATURE = 'g' # D-Bus type signature
    TYPE_UNIX_FD = 'h' # unix file descriptor

    basic_types = frozenset("ybnqiuxtdsogh")

    # Compound types
    TYPE_ARRAY = 'a' # D-Bus array type
    TYPE_VARIANT = 'v' # D-Bus variant type
    STRUCT_BEGIN_CHAR = '('
    STRUCT_END_CHAR = ')'
    DICT_ENTRY_BEGIN_CHAR = '{'
    DICT_ENTRY_END_CHAR = '}'

    # Max by-value array length
    MAXIMUM_NAME_LENGTH = 255
    MAXIMUM_SIGNATURE_LENGTH = 255

    # Types of message

    MESSAGE_TYPE_INVALID = 0 # never a valid message type
    MESSAGE_TYPE_METHOD_CALL = 1
    MESSAGE_TYPE_METHOD_RETURN = 2
    MESSAGE_TYPE_ERROR = 3
    MESSAGE_TYPE_SIGNAL = 4

    message_type_names = \
        {
            MESSAGE_TYPE_INVALID : "invalid",
            MESSAGE_TYPE_METHOD_CALL : "method_call",
            MESSAGE_TYPE_METHOD_RETURN : "method_return",
            MESSAGE_TYPE_ERROR : "error",
            MESSAGE_TYPE_SIGNAL : "signal",
        }

    # Errors
    ERROR_FAILED = "org.freedesktop.DBus.Error.Failed" # generic error
    ERROR_SERVICE_UNKNOWN = "org.freedesktop.DBus.Error.ServiceUnknown"
    ERROR_NO_REPLY = "org.freedesktop.DBus.Error.NoReply"
    ERROR_INVALID_ARGS = "org.freedesktop.DBus.Error.InvalidArgs"
    ERROR_UNKNOWN_METHOD = "org.freedesktop.DBus.Error.UnknownMethod"
    ERROR_UNKNOWN_OBJECT = "org.freedesktop.DBus.Error.UnknownObject"
    ERROR_UNKNOWN_INTERFACE = "org.freedesktop.DBus.Error.UnknownInterface"
    ERROR_UNKNOWN_PROPERTY = "org.freedesktop.DBus.Error.UnknownProperty"
    ERROR_INVALID_SIGNATURE = "org.freedesktop.DBus.Error.InvalidSignature"
    ERROR_OBJECT_PATH_IN_USE = "org.freedesktop.DBus.Error.ObjectPathInUse"

    # XML introspection format
    INTROSPECT_1_0_XML_PUBLIC_IDENTIFIER = "-//freedesktop//DTD D-BUS Object Introspection 1.0//EN"
    INTROSPECT_1_0_XML_SYSTEM_IDENTIFIER = "http://www.freedesktop.org/standards/dbus/1.0/introspect.dtd"
    INTROSPECT_1_0_XML_DOCTYPE_DECL_NODE = \
        (
            "<!DOCTYPE node PUBLIC \""
        +
            INTROSPECT_1_0_XML_PUBLIC_IDENTIFIER
        +
            "\"\n\"" + INTROSPECT_1_0_XML_SYSTEM_IDENTIFIER
        +
            "\">\n"
        )

    # from dbus-shared.h:

    SERVICE_DBUS = "org.freedesktop.DBus" # used to talk to the bus itself
    PATH_DBUS = "/org/freedesktop/DBus" # object path used to talk to the bus itself
    INTERFACE_DBUS = "org.freedesktop.DBus" # interface exported by the object with SERVICE_DBUS and PATH_DBUS
    INTERFACE_INTROSPECTABLE = "org.freedesktop.DBus.Introspectable" # interface supported by introspectable objects
    INTERFACE_PROPERTIES = "org.freedesktop.DBus.Properties" # interface supported by objects with properties
    INTERFACE_PEER = "org.freedesktop.DBus.Peer" # interface supported by most dbus peers

#end DBUS

#+
# Errors
#-

class DBusError(Exception) :
    "for raising an exception that reports a D-Bus error name and accompanying message." \
    " Raising one of these from a method handler causes an error reply carrying the" \
    " same name and message."

    def __init__(self, name, message) :
        self.name = name
        self.message = message
        self.args = ("%s -- %s" % (name, message),)
    #end __init__

#end DBusError

class UndefinedInterfaceError(Exception) :
    "raised when a method or signal is declared with no enclosing interface scope."

    def __init__(self, declaration) :
        self.declaration = declaration
        super().__init__("No interface specified for %s" % declaration)
    #end __init__

#end UndefinedInterfaceError

#+
# Name validation
#-

_element = r"[A-Za-z_][A-Za-z0-9_]*"
_path_re = re.compile(r"^/$|^(/[A-Za-z0-9_]+)+$")
_interface_re = re.compile(r"^%(e)s(\.%(e)s)+$" % {"e" : _element})
_member_re = re.compile(r"^%s$" % _element)
_unique_bus_name_re = re.compile(r"^:[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)+$")
_well_known_bus_name_re = re.compile(r"^[A-Za-z_-][A-Za-z0-9_-]*(\.[A-Za-z_-][A-Za-z0-9_-]*)+$")

def _validate(kind, name, pattern, max_length = DBUS.MAXIMUM_NAME_LENGTH) :
    if (
            not isinstance(name, str)
        or
            len(name) > max_length
        or
            pattern.match(name) == None
    ) :
        raise DBusError(DBUS.ERROR_INVALID_ARGS, "invalid %s “%s”" % (kind, name))
    #end if
    return \
        True
#end _validate

def validate_path(path) :
    return \
        _validate("object path", path, _path_re, max_length = 1 << 31)
#end validate_path

def validate_interface(name) :
    return \
        _validate("interface name", name, _interface_re)
#end validate_interface

def validate_member(name) :
    return \
        _validate("member name", name, _member_re)
#end validate_member

def validate_error_name(name) :
    return \
        _validate("error name", name, _interface_re)
#end validate_error_name

def validate_bus_name(name) :
    if isinstance(name, str) and name.startswith(":") :
        result = _validate("bus name", name, _unique_bus_name_re)
    else :
        result = _validate("bus name", name, _well_known_bus_name_re)
    #end if
    return \
        result
#end validate_bus_name

def split_path(path) :
    "convenience routine for splitting a path into a list of components."
    validate_path(path)
    return \
        list(c for c in path.split("/") if c != "")
#end split_path

def unsplit_path(path) :
    "inverse of split_path; also accepts a string, which is returned after validation."
    if isinstance(path, (tuple, list)) :
        path = "/" + "/".join(path)
    #end if
    validate_path(path)
    return \
        path
#end unsplit_path

def split_signature(signature) :
    "splits a signature string into a list of complete types. A list or tuple" \
    " is assumed to be already split, and each element is checked to be a single" \
    " complete type."

    def bad_signature(why) :
        return \
            DBusError(DBUS.ERROR_INVALID_SIGNATURE, "signature “%s”: %s" % (signature, why))
    #end bad_signature

    def complete_type(pos, depth) :
        # returns the index just past the complete type starting at pos.
        if pos >= len(signature) :
            raise bad_signature("incomplete type")
        #end if
        if depth > 64 :
            raise bad_signature("nested too deeply")
        #end if
        ch = signature[pos]
        if ch in DBUS.basic_types or ch == DBUS.TYPE_VARIANT :
            result = pos + 1
        elif ch == DBUS.TYPE_ARRAY :
            if pos + 1 < len(signature) and signature[pos + 1] == DBUS.DICT_ENTRY_BEGIN_CHAR :
                pos += 2
                if pos >= len(signature) or signature[pos] not in DBUS.basic_types :
                    raise bad_signature("dict key must be a basic type")
                #end if
                pos = complete_type(pos + 1, depth + 1)
                if pos >= len(signature) or signature[pos] != DBUS.DICT_ENTRY_END_CHAR :
                    raise bad_signature("dict entry must have exactly two types")
                #end if
                result = pos + 1
            else :
                result = complete_type(pos + 1, depth + 1)
            #end if
        elif ch == DBUS.STRUCT_BEGIN_CHAR :
            pos += 1
            if pos < len(signature) and signature[pos] == DBUS.STRUCT_END_CHAR :
                raise bad_signature("empty struct")
            #end if
            while True :
                if pos >= len(signature) :
                    raise bad_signature("unterminated struct")
                #end if
                if signature[pos] == DBUS.STRUCT_END_CHAR :
                    break
                #end if
                pos = complete_type(pos, depth + 1)
            #end while
            result = pos + 1
        else :
            raise bad_signature("unexpected character “%s”" % ch)
        #end if
        return \
            result
    #end complete_type

#begin split_signature
    if isinstance(signature, (tuple, list)) :
        result = []
        for elt in signature :
            subsig = split_signature(elt)
            if len(subsig) != 1 :
                raise DBusError \
                  (
                    DBUS.ERROR_INVALID_SIGNATURE,
                    "“%s” is not a single complete type" % elt
                  )
            #end if
            result.extend(subsig)
        #end for
    elif isinstance(signature, str) :
        if len(signature) > DBUS.MAXIMUM_SIGNATURE_LENGTH :
            raise bad_signature("too long")
        #end if
        result = []
        pos = 0
        while pos < len(signature) :
            end = complete_type(pos, 0)
            result.append(signature[pos:end])
            pos = end
        #end while
    else :
        raise TypeError("signature must be a string or a sequence of strings")
    #end if
    return \
        result
#end split_signature

def format_rule(rule) :
    "converts a match rule from dict form to string form. Keys are emitted in the" \
    " order given, entries with a None value are omitted."
    return \
        ",".join \
          (
            "%s='%s'" % (key, str(value).replace("'", "'\\''"))
            for key, value in rule.items()
            if value != None
          )
#end format_rule

#+
# Descriptors
#-

class Arg :
    "a single named (or unnamed) argument of a method or signal."

    __slots__ = ("_name", "_type")

    def __init__(self, name, type) :
        subsig = split_signature(type)
        if len(subsig) != 1 :
            raise DBusError(DBUS.ERROR_INVALID_SIGNATURE, "“%s” is not a single complete type" % type)
        #end if
        self._name = name
        self._type = subsig[0]
    #end __init__

    @property
    def name(self) :
        return \
            self._name
    #end name

    @property
    def type(self) :
        return \
            self._type
    #end type

    def __eq__(self, other) :
        return \
            isinstance(other, Arg) and (self._name, self._type) == (other._name, other._type)
    #end __eq__

    def __hash__(self) :
        return \
            hash((self._name, self._type))
    #end __hash__

    def __repr__(self) :
        return \
            "Arg(%r, %r)" % (self._name, self._type)
    #end __repr__

#end Arg

def _make_args(signature, names) :
    types = split_signature(signature)
    if names == None :
        names = [None] * len(types)
    elif len(names) != len(types) :
        raise ValueError("number of arg names should match number of items in signature")
    #end if
    return \
        tuple(Arg(name, type) for name, type in zip(names, types))
#end _make_args

def _parse_prototype(prototype) :
    # parses the textual “in a:s, out b:i” form into a list of
    # (direction, name, type) triples, direction being None if omitted.
    result = []
    for item in prototype.split(",") :
        item = item.strip()
        if item == "" :
            continue
        #end if
        words = item.split()
        if len(words) == 2 and words[0] in ("in", "out") :
            direction = words[0]
            param = words[1]
        elif len(words) == 1 :
            direction = None
            param = words[0]
        else :
            raise ValueError("invalid prototype parameter “%s”" % item)
        #end if
        name, colon, type = param.partition(":")
        if colon == "" or name == "" or type == "" :
            raise ValueError("prototype parameter “%s” must be name:type" % param)
        #end if
        result.append((direction, name, type))
    #end for
    return \
        result
#end _parse_prototype

class Method :
    "describes a method of an interface: its name and its input and output args." \
    " Instances are immutable."

    __slots__ = ("_name", "_in_args", "_out_args")

    def __init__(self, name, in_signature = "", out_signature = "", *, in_names = None, out_names = None) :
        validate_member(name)
        self._name = name
        self._in_args = _make_args(in_signature, in_names)
        self._out_args = _make_args(out_signature, out_names)
    #end __init__

    @classmethod
    def from_args(celf, name, in_args, out_args) :
        "constructs a Method from sequences of Arg objects."
        return \
            celf \
              (
                name,
                list(a.type for a in in_args),
                list(a.type for a in out_args),
                in_names = list(a.name for a in in_args),
                out_names = list(a.name for a in out_args)
              )
    #end from_args

    @classmethod
    def from_prototype(celf, name, prototype) :
        "constructs a Method from a prototype string like “in a:s, in b:i, out r:s”." \
        " A parameter with no direction keyword is taken as an input."
        in_args = []
        out_args = []
        for direction, argname, type in _parse_prototype(prototype) :
            (in_args, out_args)[direction == "out"].append(Arg(argname, type))
        #end for
        return \
            celf.from_args(name, in_args, out_args)
    #end from_prototype

    @property
    def name(self) :
        return \
            self._name
    #end name

    @property
    def in_args(self) :
        return \
            self._in_args
    #end in_args

    @property
    def out_args(self) :
        return \
            self._out_args
    #end out_args

    @property
    def in_signature(self) :
        return \
            list(a.type for a in self._in_args)
    #end in_signature

    @property
    def out_signature(self) :
        return \
            list(a.type for a in self._out_args)
    #end out_signature

    def __repr__(self) :
        return \
            (
                "Method(%r, %r, %r)"
            %
                (self._name, "".join(self.in_signature), "".join(self.out_signature))
            )
    #end __repr__

#end Method

class Signal :
    "describes a signal of an interface: its name and its args. Instances are immutable."

    __slots__ = ("_name", "_args")

    def __init__(self, name, signature = "", *, names = None) :
        validate_member(name)
        self._name = name
        self._args = _make_args(signature, names)
    #end __init__

    @classmethod
    def from_args(celf, name, args) :
        return \
            celf(name, list(a.type for a in args), names = list(a.name for a in args))
    #end from_args

    @classmethod
    def from_prototype(celf, name, prototype) :
        "constructs a Signal from a prototype string like “a:s, b:i”."
        args = []
        for direction, argname, type in _parse_prototype(prototype) :
            if direction == "in" :
                raise ValueError("signal “%s” cannot have input parameters" % name)
            #end if
            args.append(Arg(argname, type))
        #end for
        return \
            celf.from_args(name, args)
    #end from_prototype

    @property
    def name(self) :
        return \
            self._name
    #end name

    @property
    def args(self) :
        return \
            self._args
    #end args

    @property
    def signature(self) :
        return \
            list(a.type for a in self._args)
    #end signature

    def __repr__(self) :
        return \
            "Signal(%r, %r)" % (self._name, "".join(self.signature))
    #end __repr__

#end Signal

class Interface :
    "a named collection of methods and signals."

    __slots__ = ("name", "methods", "signals")

    def __init__(self, name) :
        validate_interface(name)
        self.name = name
        self.methods = {} # dict of method name => Method
        self.signals = {} # dict of signal name => Signal
    #end __init__

    def define(self, descriptor) :
        "adds a Method or Signal to this interface, replacing any previous" \
        " definition with the same name."
        if isinstance(descriptor, Method) :
            self.methods[descriptor.name] = descriptor
        elif isinstance(descriptor, Signal) :
            self.signals[descriptor.name] = descriptor
        else :
            raise TypeError("can only define a Method or Signal, not %s" % type(descriptor).__name__)
        #end if
        return \
            descriptor
    #end define

    def define_method(self, name, prototype) :
        "convenience for defining a method from its prototype string."
        return \
            self.define(Method.from_prototype(name, prototype))
    #end define_method

    def copy(self) :
        "returns a new Interface with the same name and definitions. The descriptors" \
        " themselves are shared, since they are immutable."
        result = type(self)(self.name)
        result.methods = dict(self.methods)
        result.signals = dict(self.signals)
        return \
            result
    #end copy

    def __repr__(self) :
        return \
            (
                "Interface(%r, methods = %r, signals = %r)"
            %
                (self.name, list(self.methods), list(self.signals))
            )
    #end __repr__

#end Interface

def handler_key(interface, member) :
    "the key under which the handler for a method is bound in an InterfaceTable."
    return \
        (interface, member)
#end handler_key

class InterfaceTable :
    "maps interface names to Interface objects for an exportable object class," \
    " together with the handler functions bound to each (interface, method) pair.\n" \
    "\n" \
    "Tables are copy-on-write with respect to inheritance: derive() gives a child" \
    " table that initially shares every Interface with its parent, but own() never" \
    " modifies an inherited Interface in place; it installs a private copy first."

    __slots__ = ("_interfaces", "_owned", "_handlers")

    def __init__(self) :
        self._interfaces = {} # dict of interface name => Interface
        self._owned = set() # names of interfaces this table may modify in place
        self._handlers = {} # dict of handler_key() => function
    #end __init__

    def derive(self) :
        "returns a new table inheriting everything in this one."
        result = type(self)()
        result._interfaces = dict(self._interfaces)
        result._handlers = dict(self._handlers)
        return \
            result
    #end derive

    def own(self, name) :
        "returns the Interface with the given name, owned by this table. It is created" \
        " if it does not exist yet, or cloned if it was inherited."
        if name not in self._owned :
            inherited = self._interfaces.get(name)
            if inherited != None :
                iface = inherited.copy()
            else :
                iface = Interface(name)
            #end if
            self._interfaces[name] = iface
            self._owned.add(name)
        #end if
        return \
            self._interfaces[name]
    #end own

    def owns(self, name) :
        return \
            name in self._owned
    #end owns

    def bind(self, interface, member, handler) :
        "binds the handler function for the given method of the given interface."
        if interface not in self._owned or member not in self._interfaces[interface].methods :
            raise KeyError("method “%s” is not defined on interface “%s”" % (member, interface))
        #end if
        self._handlers[handler_key(interface, member)] = handler
    #end bind

    def handler(self, interface, member) :
        "returns the handler function bound for the given method, or None."
        return \
            self._handlers.get(handler_key(interface, member))
    #end handler

    def __getitem__(self, name) :
        return \
            self._interfaces[name]
    #end __getitem__

    def __contains__(self, name) :
        return \
            name in self._interfaces
    #end __contains__

    def __iter__(self) :
        return \
            iter(self._interfaces)
    #end __iter__

    def __len__(self) :
        return \
            len(self._interfaces)
    #end __len__

    def get(self, name, default = None) :
        return \
            self._interfaces.get(name, default)
    #end get

    def keys(self) :
        return \
            self._interfaces.keys()
    #end keys

    def values(self) :
        return \
            self._interfaces.values()
    #end values

    def items(self) :
        return \
            self._interfaces.items()
    #end items

    def __repr__(self) :
        return \
            "InterfaceTable(%r)" % list(self._interfaces)
    #end __repr__

#end InterfaceTable

#+
# Messages
#-

class Message :
    "an in-memory D-Bus message. Do not instantiate directly; use one of the" \
    " new_xxx methods."

    __slots__ = \
        (
            "type", "path", "interface", "member", "destination", "sender",
            "serial", "reply_serial", "error_name", "no_reply", "signature", "args",
        )

    def __init__(self, type) :
        if type not in DBUS.message_type_names or type == DBUS.MESSAGE_TYPE_INVALID :
            raise ValueError("invalid message type %s" % repr(type))
        #end if
        self.type = type
        self.path = None
        self.interface = None
        self.member = None
        self.destination = None
        self.sender = None
        self.serial = None
        self.reply_serial = None
        self.error_name = None
        self.no_reply = False
        self.signature = [] # list of complete types, one per arg
        self.args = []
    #end __init__

    @classmethod
    def new_method_call(celf, destination, path, iface, method) :
        validate_path(path)
        if iface != None :
            validate_interface(iface)
        #end if
        validate_member(method)
        result = celf(DBUS.MESSAGE_TYPE_METHOD_CALL)
        result.destination = destination
        result.path = path
        result.interface = iface
        result.member = method
        return \
            result
    #end new_method_call

    @classmethod
    def new_signal(celf, path, iface, name) :
        validate_path(path)
        validate_interface(iface)
        validate_member(name)
        result = celf(DBUS.MESSAGE_TYPE_SIGNAL)
        result.path = path
        result.interface = iface
        result.member = name
        return \
            result
    #end new_signal

    def _new_reply(self, msgtype) :
        result = type(self)(msgtype)
        result.destination = self.sender
        result.reply_serial = self.serial
        return \
            result
    #end _new_reply

    def new_method_return(self) :
        return \
            self._new_reply(DBUS.MESSAGE_TYPE_METHOD_RETURN)
    #end new_method_return

    def new_error(self, name, message) :
        validate_error_name(name)
        result = self._new_reply(DBUS.MESSAGE_TYPE_ERROR)
        result.error_name = name
        if message != None :
            result.append(DBUS.TYPE_STRING, message)
        #end if
        return \
            result
    #end new_error

    def new_error_from_exception(self, exc) :
        "builds an error reply to this message from an exception. A DBusError" \
        " keeps its name, anything else is reported as a generic failure."
        if (
                isinstance(exc, DBusError)
            and
                isinstance(exc.name, str)
            and
                _interface_re.match(exc.name) != None
        ) :
            result = self.new_error(exc.name, exc.message)
        else :
            result = self.new_error(DBUS.ERROR_FAILED, str(exc) or type(exc).__name__)
        #end if
        return \
            result
    #end new_error_from_exception

    def annotate_exception(self, exc) :
        "returns a DBusError equivalent to exc, with text that identifies this message" \
        " as the cause. The original exception is chained as the cause."
        if isinstance(exc, DBusError) :
            name = exc.name
            text = exc.message
        else :
            name = DBUS.ERROR_FAILED
            text = str(exc) or type(exc).__name__
        #end if
        result = DBusError(name, "%s; caused by %s" % (text, self))
        result.__cause__ = exc
        return \
            result
    #end annotate_exception

    def append(self, type, value) :
        "appends a single value of the given complete type."
        subsig = split_signature(type)
        if len(subsig) != 1 :
            raise DBusError(DBUS.ERROR_INVALID_SIGNATURE, "“%s” is not a single complete type" % type)
        #end if
        self.signature.append(subsig[0])
        self.args.append(value)
    #end append

    def append_objects(self, signature, *values) :
        "appends values according to signature, which must have one complete type per value."
        signature = split_signature(signature)
        if len(signature) != len(values) :
            raise ValueError \
              (
                "signature has %d types but %d values given" % (len(signature), len(values))
              )
        #end if
        for sigtype, value in zip(signature, values) :
            self.append(sigtype, value)
        #end for
    #end append_objects

    def expect_return_objects(self) :
        "for a reply message: returns the list of args of a method return, or raises" \
        " DBusError for an error reply."
        if self.type == DBUS.MESSAGE_TYPE_METHOD_RETURN :
            result = list(self.args)
        elif self.type == DBUS.MESSAGE_TYPE_ERROR :
            if len(self.args) != 0 and isinstance(self.args[0], str) :
                text = self.args[0]
            else :
                text = ""
            #end if
            raise DBusError(self.error_name, text)
        else :
            raise ValueError("unexpected reply type %d" % self.type)
        #end if
        return \
            result
    #end expect_return_objects

    @property
    def type_name(self) :
        return \
            DBUS.message_type_names[self.type]
    #end type_name

    def __str__(self) :
        return \
            (
                "%s sender=%s -> dest=%s serial=%s reply_serial=%s path=%s; interface=%s; member=%s error_name=%s"
            %
                (
                    self.type_name,
                    self.sender,
                    self.destination,
                    self.serial,
                    self.reply_serial,
                    self.path,
                    self.interface,
                    self.member,
                    self.error_name,
                )
            )
    #end __str__

    def __repr__(self) :
        return \
            "<Message %s, args = %r>" % (self, self.args)
    #end __repr__

#end Message

#+
# Introspection
#-

class Introspection :
    "high-level wrapper for the DBUS.INTERFACE_INTROSPECTABLE interface: the set of" \
    " interfaces of one object, plus the names of its child nodes."

    __slots__ = ("name", "interfaces", "nodes")

    def __init__(self, name = None, interfaces = None, nodes = None) :
        self.name = name
        self.interfaces = list(interfaces or ())
        self.nodes = list(nodes or ()) # names of child nodes
    #end __init__

    @property
    def interfaces_by_name(self) :
        "returns a dict associating all the interfaces with their names."
        return \
            dict((iface.name, iface) for iface in self.interfaces)
    #end interfaces_by_name

    @classmethod
    def parse(celf, s) :
        "generates an Introspection tree from the given XML string description."

        def parse_args(elt, is_method) :
            in_args = []
            out_args = []
            for child in elt :
                if child.tag == "arg" :
                    if "type" not in child.attrib :
                        raise DBusError \
                          (
                            DBUS.ERROR_INVALID_ARGS,
                            "arg of “%s” has no type" % elt.get("name")
                          )
                    #end if
                    direction = child.get("direction", ("out", "in")[is_method])
                    if direction not in ("in", "out") :
                        raise DBusError \
                          (
                            DBUS.ERROR_INVALID_ARGS,
                            "invalid arg direction “%s”" % direction
                          )
                    #end if
                    arg = Arg(child.get("name"), child.get("type"))
                    if direction == "in" and is_method :
                        in_args.append(arg)
                    else :
                        out_args.append(arg)
                    #end if
                #end if
            #end for
            return \
                in_args, out_args
        #end parse_args

        def parse_interface(elt) :
            iface = Interface(elt.get("name"))
            for child in elt :
                if child.tag == "method" :
                    in_args, out_args = parse_args(child, True)
                    iface.define(Method.from_args(child.get("name"), in_args, out_args))
                elif child.tag == "signal" :
                    ignore, args = parse_args(child, False)
                    iface.define(Signal.from_args(child.get("name"), args))
                #end if
                # properties and annotations are not represented
            #end for
            return \
                iface
        #end parse_interface

    #begin parse
        try :
            root = XMLElementTree.fromstring(s)
        except XMLElementTree.ParseError as err :
            raise DBusError(DBUS.ERROR_INVALID_ARGS, "malformed introspection data: %s" % err)
        #end try
        if root.tag != "node" :
            raise DBusError(DBUS.ERROR_INVALID_ARGS, "introspection root must be a node, not “%s”" % root.tag)
        #end if
        interfaces = []
        nodes = []
        for child in root :
            if child.tag == "interface" :
                interfaces.append(parse_interface(child))
            elif child.tag == "node" :
                nodes.append(child.get("name"))
            #end if
        #end for
        _logger.debug("parsed introspection: %d interfaces, %d nodes", len(interfaces), len(nodes))
        return \
            celf(name = root.get("name"), interfaces = interfaces, nodes = nodes)
    #end parse

    def unparse(self, indent_step = 4) :
        "returns an XML string description of this Introspection tree."

        out = [DBUS.INTROSPECT_1_0_XML_DOCTYPE_DECL_NODE]

        def put(depth, line) :
            out.append(" " * (depth * indent_step) + line + "\n")
        #end put

        def put_args(depth, args, direction) :
            for arg in args :
                attrs = ""
                if arg.name != None :
                    attrs += " name=%s" % quoteattr(arg.name)
                #end if
                attrs += " type=%s" % quoteattr(arg.type)
                if direction != None :
                    attrs += " direction=\"%s\"" % direction
                #end if
                put(depth, "<arg%s/>" % attrs)
            #end for
        #end put_args

    #begin unparse
        if self.name != None :
            put(0, "<node name=%s>" % quoteattr(self.name))
        else :
            put(0, "<node>")
        #end if
        for iface in self.interfaces :
            put(1, "<interface name=%s>" % quoteattr(iface.name))
            for method in iface.methods.values() :
                put(2, "<method name=%s>" % quoteattr(method.name))
                put_args(3, method.in_args, "in")
                put_args(3, method.out_args, "out")
                put(2, "</method>")
            #end for
            for signal in iface.signals.values() :
                put(2, "<signal name=%s>" % quoteattr(signal.name))
                put_args(3, signal.args, None)
                put(2, "</signal>")
            #end for
            put(1, "</interface>")
        #end for
        for node in self.nodes :
            put(1, "<node name=%s/>" % quoteattr(node))
        #end for
        put(0, "</node>")
        return \
            "".join(out)
    #end unparse

#end Introspection

def _standard_introspectable() :
    iface = Interface(DBUS.INTERFACE_INTROSPECTABLE)
    iface.define(Method("Introspect", "", "s", out_names = ["xml_data"]))
    return \
        iface
#end _standard_introspectable

standard_interfaces = \
    {
        DBUS.INTERFACE_INTROSPECTABLE : _standard_introspectable(),
    }
del _standard_introspectable
