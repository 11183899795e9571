"""
Higher-level D-Bus call routing on top of dbroute. Provides a framework
for declaring interfaces on exportable object classes and dispatching
incoming method calls to their handlers, and for on-the-fly invocation
of methods on remote objects via lazily-introspected proxy objects.
"""
#+
# Copyright 2017-2018 the DBRoute contributors.
# Licensed under the GNU Lesser General Public License v2.1 or later.
#-

import collections
import itertools
import logging
import threading
import dbroute
from dbroute import \
    DBUS, \
    DBusError, \
    UndefinedInterfaceError, \
    Interface, \
    InterfaceTable, \
    Introspection, \
    Message, \
    Method, \
    Signal

_logger = logging.getLogger("relay")

class NoSuchMethodError(AttributeError) :
    "raised on the client side when a name cannot be resolved to a method" \
    " of a proxy object."
    pass
#end NoSuchMethodError

#+
# Interface registration
#-

_registration_lock = threading.RLock()
  # serializes registration scopes and interface-table updates
_registration_state = threading.local()
  # current: the open RegistrationContext, if any
  # class_bodies: declaration lists of the Object class bodies being executed, innermost last

def _current_context() :
    return \
        getattr(_registration_state, "current", None)
#end _current_context

def _class_bodies() :
    stack = getattr(_registration_state, "class_bodies", None)
    if stack == None :
        stack = []
        _registration_state.class_bodies = stack
    #end if
    return \
        stack
#end _class_bodies

class RegistrationContext :
    "the scope within which method and signal declarations attach to a particular" \
    " interface. Do not instantiate directly; use dbus_interface(). Declarations" \
    " are recorded in the enclosing Object class body as they are made, so the" \
    " Python names they are bound to (if any) do not matter."

    __slots__ = ("interface", "declarations")

    def __init__(self, interface) :
        dbroute.validate_interface(interface)
        self.interface = interface
        self.declarations = None
    #end __init__

    def __enter__(self) :
        if _current_context() != None :
            raise RuntimeError \
              (
                "cannot open scope for “%s” inside scope for “%s”" % (self.interface, _current_context().interface)
              )
        #end if
        _registration_lock.acquire()
        bodies = _class_bodies()
        if len(bodies) != 0 :
            self.declarations = bodies[-1]
        else :
            # not in an Object class body: declarations are checked but go nowhere
            self.declarations = []
        #end if
        _registration_state.current = self
        _logger.debug("entering registration scope for %s", self.interface)
        return \
            self
    #end __enter__

    def __exit__(self, exc_type, exc_value, traceback) :
        _registration_state.current = None
        _registration_lock.release()
        return \
            False
    #end __exit__

    def method(self, name, in_signature = "", out_signature = "", *, prototype = None) :
        "returns a decorator that declares the decorated function as the handler for" \
        " the named method of this interface."
        if prototype != None :
            method = Method.from_prototype(name, prototype)
        else :
            method = Method(name, in_signature, out_signature)
        #end if
        interface = self.interface
        declarations = self.declarations

        def decorate(func) :
            if not callable(func) :
                raise TypeError("only apply decorator to callables.")
            #end if
            declarations.append((interface, method, func))
            return \
                func
        #end decorate

    #begin method
        return \
            decorate
    #end method

    def signal(self, name, in_signature = "", *, prototype = None) :
        "declares the named signal on this interface, and returns a function which," \
        " installed as a method of an exportable class, will emit it."
        if prototype != None :
            signal = Signal.from_prototype(name, prototype)
        else :
            signal = Signal(name, in_signature)
        #end if
        interface = self.interface

        def emit_signal(self, *args) :
            self.emit(interface, signal, *args)
        #end emit_signal

    #begin signal
        self.declarations.append((interface, signal, None))
        emit_signal.__name__ = name
        emit_signal.__doc__ = \
            (
                "emits signal %s.%s, %s"
            %
                (
                    interface,
                    name,
                    (
                        lambda : "no args",
                        lambda : "args %s" % "".join(signal.signature),
                    )[len(signal.args) != 0](),
                )
            )
        return \
            emit_signal
    #end signal

#end RegistrationContext

def dbus_interface(name) :
    "opens a registration scope for the named interface, for use in a with-statement" \
    " in the body of an Object subclass:\n" \
    "\n" \
    "    class Calculator(Object) :\n" \
    "        with dbus_interface(«interface_name») :\n" \
    "            @dbus_method(«name», in_signature = «sig», out_signature = «sig»)\n" \
    "            def handler(self, ...) :\n" \
    "                ...\n" \
    "            signal_emitter = dbus_signal(«name», in_signature = «sig»)\n" \
    "\n" \
    "The scope holds a process-wide lock, so concurrent class definitions on other" \
    " threads cannot attach declarations to the wrong interface."
    return \
        RegistrationContext(name)
#end dbus_interface

def dbus_method(name, in_signature = "", out_signature = "", *, prototype = None) :
    "decorator for declaring a method handler within the current dbus_interface() scope." \
    " The signatures can alternatively be given in the prototype form" \
    " “in «name»:«type», out «name»:«type», ...”."
    context = _current_context()
    if context == None :
        raise UndefinedInterfaceError(name)
    #end if
    return \
        context.method(name, in_signature, out_signature, prototype = prototype)
#end dbus_method

def dbus_signal(name, in_signature = "", *, prototype = None) :
    "declares a signal within the current dbus_interface() scope, returning" \
    " an emitter function to be assigned as a class attribute."
    context = _current_context()
    if context == None :
        raise UndefinedInterfaceError(name)
    #end if
    return \
        context.signal(name, in_signature, prototype = prototype)
#end dbus_signal

#+
# Exportable objects
#-

class ObjectType(type) :
    "metaclass for Object. Each class body gets its own list in which" \
    " dbus_method() and dbus_signal() record their declarations, keyed by" \
    " interface rather than by the names the handlers are bound to."

    @classmethod
    def __prepare__(celf, name, bases, **kwargs) :
        declarations = []
        _class_bodies().append(declarations)
        return \
            {"_dbus_declarations" : declarations}
    #end __prepare__

    def __new__(celf, name, bases, namespace, **kwargs) :
        bodies = _class_bodies()
        declarations = namespace.get("_dbus_declarations")
        for i in range(len(bodies) - 1, -1, -1) :
            if bodies[i] is declarations :
                del bodies[i]
                break
            #end if
        #end for
        return \
            super().__new__(celf, name, bases, namespace, **kwargs)
    #end __new__

#end ObjectType

class Object(metaclass = ObjectType) :
    "base class for objects that are to be exported by a Service. Subclasses" \
    " declare their interfaces with dbus_interface(), dbus_method() and" \
    " dbus_signal(); each subclass gets its own InterfaceTable, inheriting" \
    " its superclass’s declarations without being able to change them."

    _dbus_interfaces = InterfaceTable()

    def __init_subclass__(celf, **kwargs) :
        super().__init_subclass__(**kwargs)
        declared = celf.__dict__.get("_dbus_declarations", ())
        if len(declared) != 0 :
            with _registration_lock :
                table = celf._own_interface_table()
                for interface, descriptor, handler in declared :
                    table.own(interface).define(descriptor)
                    if handler != None :
                        table.bind(interface, descriptor.name, handler)
                    #end if
                #end for
            #end with
            _logger.debug("%s registers interfaces %s", celf.__qualname__, list(table.keys()))
        #end if
    #end __init_subclass__

    @classmethod
    def _own_interface_table(celf) :
        # copy-on-write: a class gets a private table on its first registration.
        if "_dbus_interfaces" not in celf.__dict__ :
            celf._dbus_interfaces = celf._dbus_interfaces.derive()
        #end if
        return \
            celf._dbus_interfaces
    #end _own_interface_table

    @classmethod
    def interface_table(celf) :
        "returns the InterfaceTable holding this class’s interfaces."
        return \
            celf._dbus_interfaces
    #end interface_table

    def __init__(self, path) :
        dbroute.validate_path(path)
        self.path = path
        self._service = None
    #end __init__

    @property
    def service(self) :
        "the Service that this object is exported by, or None."
        return \
            self._service
    #end service

    @service.setter
    def service(self, service) :
        if service != None and self._service != None and service is not self._service :
            raise RuntimeError \
              (
                "object “%s” is already exported by “%s”" % (self.path, self._service.name)
              )
        #end if
        self._service = service
    #end service

    def dispatch(self, message) :
        "handles a method-call message addressed to this object by invoking the" \
        " bound handler, and sends back exactly one reply, which is also returned." \
        " Messages of other types are ignored, returning None."
        if message.type != DBUS.MESSAGE_TYPE_METHOD_CALL :
            return \
                None
        #end if
        assert self._service != None, "object “%s” has not been exported" % self.path
        table = type(self).interface_table()
        iface = table.get(message.interface)
        if iface == None :
            reply = message.new_error \
              (
                DBUS.ERROR_UNKNOWN_METHOD,
                    "Interface \"%s\" of object \"%s\" doesn't exist"
                %
                    (message.interface, message.path)
              )
        elif message.member not in iface.methods :
            reply = message.new_error \
              (
                DBUS.ERROR_UNKNOWN_METHOD,
                    "Method \"%s\" on interface \"%s\" of object \"%s\" doesn't exist"
                %
                    (message.member, message.interface, message.path)
              )
        else :
            method = iface.methods[message.member]
            try :
                handler = table.handler(iface.name, method.name)
                if handler == None :
                    raise NotImplementedError \
                      (
                        "no handler bound for %s.%s" % (iface.name, method.name)
                      )
                #end if
                result = handler(self, *message.args)
                if result == None :
                    result = []
                elif isinstance(result, (tuple, list)) :
                    result = list(result)
                else :
                    result = [result]
                #end if
                reply = message.new_method_return()
                for sigtype, value in zip(method.out_signature, result) :
                    reply.append(sigtype, value)
                #end for
            except Exception as err :
                _logger.debug \
                  (
                    "handler for %s.%s on %s failed", iface.name, method.name, self.path,
                    exc_info = True
                  )
                reply = message.new_error_from_exception(message.annotate_exception(err))
            #end try
        #end if
        self._service.bus.send(reply)
        return \
            reply
    #end dispatch

    def emit(self, interface, signal, *args) :
        "emits a signal from this object. interface and signal may be given as" \
        " Interface and Signal objects, or as names defined on this class."
        assert self._service != None, "object “%s” has not been exported" % self.path
        if not isinstance(interface, Interface) :
            interface = type(self).interface_table()[interface]
        #end if
        if not isinstance(signal, Signal) :
            signal = interface.signals[signal]
        #end if
        self._service.bus.emit(self._service, self, interface, signal, *args)
    #end emit

#end Object

class Service :
    "a bus name together with the tree of objects exported under it."

    __slots__ = ("name", "bus", "_root")

    class _Node :

        __slots__ = ("object", "children")

        def __init__(self) :
            self.object = None
            self.children = {} # dict of path component => _Node
        #end __init__

    #end _Node

    def __init__(self, name, bus) :
        dbroute.validate_bus_name(name)
        self.name = name
        self.bus = bus
        self._root = self._Node()
    #end __init__

    def get_node(self, path, create = False) :
        "returns the node for the given path, or None if there is none and create is false."
        node = self._root
        for component in dbroute.split_path(path) :
            if component not in node.children :
                if not create :
                    node = None
                    break
                #end if
                node.children[component] = self._Node()
            #end if
            node = node.children[component]
        #end for
        return \
            node
    #end get_node

    def exists(self, path) :
        node = self.get_node(path)
        return \
            node != None and node.object != None
    #end exists

    def export(self, obj) :
        "makes obj reachable at its path through this service."
        if not isinstance(obj, Object) :
            raise TypeError("can only export an Object, not %s" % type(obj).__name__)
        #end if
        node = self.get_node(obj.path, create = True)
        if node.object != None and node.object is not obj :
            raise DBusError \
              (
                DBUS.ERROR_OBJECT_PATH_IN_USE,
                "an object is already exported at “%s”" % obj.path
              )
        #end if
        obj.service = self
        node.object = obj
        _logger.debug("%s exported at %s", type(obj).__name__, obj.path)
    #end export

    def unexport(self, obj) :
        "removes obj from this service. Returns whether it was exported here."
        node = self.get_node(obj.path)
        if node == None or node.object is not obj :
            result = False
        else :
            node.object = None
            obj.service = None
            self._trim()
            _logger.debug("%s unexported from %s", type(obj).__name__, obj.path)
            result = True
        #end if
        return \
            result
    #end unexport

    def _trim(self) :
        # removes nodes with neither objects nor children.

        def trim(node) :
            for name in list(node.children) :
                child = node.children[name]
                trim(child)
                if child.object == None and len(child.children) == 0 :
                    del node.children[name]
                #end if
            #end for
        #end trim

    #begin _trim
        trim(self._root)
    #end _trim

    def introspect(self, path) :
        "returns introspection XML for the given path: the interfaces of any object" \
        " exported there, and the names of the nodes below it."
        node = self.get_node(path)
        if node == None :
            raise DBusError(DBUS.ERROR_UNKNOWN_OBJECT, "Object \"%s\" doesn't exist" % path)
        #end if
        interfaces = [dbroute.standard_interfaces[DBUS.INTERFACE_INTROSPECTABLE]]
        if node.object != None :
            interfaces.extend \
              (
                iface
                for iface in type(node.object).interface_table().values()
                if iface.name != DBUS.INTERFACE_INTROSPECTABLE
              )
        #end if
        return \
            Introspection \
              (
                interfaces = interfaces,
                nodes = sorted(node.children.keys())
              ).unparse()
    #end introspect

    def dispatch(self, message) :
        "routes a method call to the object at its path. Introspect calls are" \
        " answered here, for intermediate nodes as well as for objects."
        if message.type != DBUS.MESSAGE_TYPE_METHOD_CALL :
            return \
                None
        #end if
        node = self.get_node(message.path)
        if (
                node != None
            and
                message.interface == DBUS.INTERFACE_INTROSPECTABLE
            and
                message.member == "Introspect"
        ) :
            reply = message.new_method_return()
            reply.append(DBUS.TYPE_STRING, self.introspect(message.path))
            self.bus.send(reply)
        elif node == None or node.object == None :
            reply = message.new_error \
              (
                DBUS.ERROR_UNKNOWN_OBJECT,
                "Object \"%s\" doesn't exist" % message.path
              )
            self.bus.send(reply)
        else :
            reply = node.object.dispatch(message)
        #end if
        return \
            reply
    #end dispatch

#end Service

#+
# Proxy objects -- for client-side use
#-

class ApiOptions :
    "options affecting the behaviour of proxy objects.\n" \
    "\n" \
    "  * proxy_method_returns_array -- if true, a proxy method call always returns" \
    " the list of reply args; otherwise it returns None for no args, the value itself" \
    " for one arg, and the list for more than one."

    __slots__ = ("proxy_method_returns_array",)

    def __init__(self, proxy_method_returns_array = False) :
        self.proxy_method_returns_array = proxy_method_returns_array
    #end __init__

    def __repr__(self) :
        return \
            "ApiOptions(proxy_method_returns_array = %r)" % self.proxy_method_returns_array
    #end __repr__

#end ApiOptions
ApiOptions.A0 = ApiOptions(proxy_method_returns_array = True)
ApiOptions.CURRENT = ApiOptions(proxy_method_returns_array = False)

class ProxyInterface :
    "base class for proxy interface classes generated by def_proxy_interface()." \
    " An instance is bound to one ProxyObject, and has one method per method" \
    " of the remote interface."

    __slots__ = ("_object",)

    _iface_name = None
    _interface = None
      # class fields filled in by def_proxy_interface.

    def __init__(self, object) :
        self._object = object
    #end __init__

    @property
    def object(self) :
        "the ProxyObject this interface belongs to."
        return \
            self._object
    #end object

    @property
    def name(self) :
        return \
            self._iface_name
    #end name

    @property
    def methods(self) :
        return \
            self._interface.methods
    #end methods

    @property
    def signals(self) :
        return \
            self._interface.signals
    #end signals

    def _call_method(self, method, args, reply_handler = None) :
        proxy = self._object
        if len(args) != len(method.in_args) :
            raise TypeError \
              (
                    "%s() takes %d args (%d given)"
                %
                    (method.name, len(method.in_args), len(args))
              )
        #end if
        message = Message.new_method_call \
          (
            destination = proxy.destination,
            path = proxy.path,
            iface = self._iface_name,
            method = method.name
          )
        message.append_objects(method.in_signature, *args)
        if reply_handler != None :

            def on_reply(reply) :
                if reply.type == DBUS.MESSAGE_TYPE_METHOD_RETURN :
                    reply_handler(reply, *reply.args)
                else :
                    reply_handler(reply)
                #end if
            #end on_reply

            proxy.bus.send_with_reply(message, on_reply)
            result = None
        else :
            reply = proxy.bus.send_with_reply_and_block(message)
            result = reply.expect_return_objects()
            if not proxy.api.proxy_method_returns_array :
                if len(result) == 0 :
                    result = None
                elif len(result) == 1 :
                    result = result[0]
                #end if
            #end if
        #end if
        return \
            result
    #end _call_method

    def _signal_rule(self, name) :
        proxy = self._object
        return \
            {
                "type" : "signal",
                "sender" : proxy.destination,
                "path" : proxy.path,
                "interface" : self._iface_name,
                "member" : name,
            }
    #end _signal_rule

    def on_signal(self, name, handler = None) :
        "registers handler to be called with the args of each occurrence of the named" \
        " signal from the remote object. A handler of None removes the registration."
        rule = ProxyInterface._signal_rule(self, name)
        if handler != None :
            self._object.bus.add_match(rule, lambda message : handler(*message.args))
        else :
            self._object.bus.remove_match(rule)
        #end if
    #end on_signal

    def _properties_call(self, member, signature, *args) :
        proxy = self._object
        message = Message.new_method_call \
          (
            destination = proxy.destination,
            path = proxy.path,
            iface = DBUS.INTERFACE_PROPERTIES,
            method = member
          )
        message.append_objects(signature, *args)
        return \
            proxy.bus.send_with_reply_and_block(message).expect_return_objects()
    #end _properties_call

    def __getitem__(self, propname) :
        "returns the value of the named property of this interface."
        return \
            ProxyInterface._properties_call(self, "Get", "ss", self._iface_name, propname)[0]
    #end __getitem__

    def __setitem__(self, propname, value) :
        ProxyInterface._properties_call(self, "Set", "ssv", self._iface_name, propname, value)
    #end __setitem__

    def all_properties(self) :
        "returns a dict of the names and values of all properties of this interface."
        return \
            ProxyInterface._properties_call(self, "GetAll", "s", self._iface_name)[0]
    #end all_properties

    def call(self, name, *args, reply_handler = None) :
        "calls the named method of this interface. This also reaches methods whose" \
        " names clash with attributes of ProxyInterface, which get no method of their own."
        method = self._interface.methods.get(name)
        if method == None :
            raise NoSuchMethodError \
              (
                    "undefined method “%s” for D-Bus interface “%s” on object “%s”"
                %
                    (name, self._iface_name, self._object.path)
              )
        #end if
        return \
            ProxyInterface._call_method(self, method, args, reply_handler)
    #end call

    def __repr__(self) :
        return \
            "<%s proxy for %s at %s>" % (self._iface_name, self._object.destination, self._object.path)
    #end __repr__

#end ProxyInterface

def def_proxy_interface(introspected) :
    "given an Interface object, creates a ProxyInterface subclass that can be" \
    " instantiated for a particular ProxyObject, thus:\n" \
    "\n" \
    "    iface = proxy_class(«proxy_object»)\n" \
    "\n" \
    "from which you can make proxy method calls like iface.«method»(«args»)," \
    " optionally passing a reply_handler keyword arg to receive the reply" \
    " asynchronously instead of waiting for it. A method whose name clashes with" \
    " a ProxyInterface attribute is only reachable as iface.call(«name», «args»)."

    if not isinstance(introspected, Interface) :
        raise TypeError("introspected must be an Interface")
    #end if

    class proxy(ProxyInterface) :
        # class that will be returned.
        __slots__ = ()
        # rest filled in dynamically below.
    #end proxy

    def def_method(intr_method) :
        # constructs a method-call method.

        def call_method(self, *args, reply_handler = None) :
            return \
                ProxyInterface._call_method(self, intr_method, args, reply_handler)
        #end call_method

    #begin def_method
        call_method.__name__ = intr_method.name
        call_method.__doc__ = \
            (
                "method, %(args)s, %(result)s"
            %
                {
                    "args" :
                        (
                            lambda : "no args",
                            lambda : "args %s" % "".join(intr_method.in_signature),
                        )[len(intr_method.in_args) != 0](),
                    "result" :
                        (
                            lambda : "no result",
                            lambda : "result %s" % "".join(intr_method.out_signature),
                        )[len(intr_method.out_args) != 0](),
                }
            )
        setattr(proxy, intr_method.name, call_method)
    #end def_method

#begin def_proxy_interface
    proxy.__name__ = introspected.name.replace(".", "_")
    proxy.__qualname__ = proxy.__name__
    proxy._iface_name = introspected.name
    proxy._interface = introspected
    proxy.__doc__ = "for making method calls on the %s interface." % introspected.name
    reserved = set(dir(ProxyInterface))
    for method in introspected.methods.values() :
        if method.name in reserved :
            _logger.debug \
              (
                "%s.%s clashes with a ProxyInterface attribute, use call() for it",
                introspected.name, method.name
              )
        else :
            def_method(method)
        #end if
    #end for
    return \
        proxy
#end def_proxy_interface

class ProxyObject :
    "a client-side handle on a remote object, identified by a bus, a destination" \
    " bus name and a path. Its interfaces are discovered by introspecting the" \
    " remote object the first time they are needed; thereafter\n" \
    "\n" \
    "    proxy[«interface_name»].«method»(«args»)\n" \
    "\n" \
    "calls a method on a specific interface, while\n" \
    "\n" \
    "    proxy.«method»(«args»)\n" \
    "\n" \
    "works for any method name that is defined by just one of the interfaces," \
    " or else by the default interface, if one has been set."

    def __init__(self, bus, destination, path, *, api = ApiOptions.CURRENT, default_iface = None) :
        dbroute.validate_path(path)
        self.bus = bus
        self.destination = destination
        self.path = path
        self.api = api
        self.default_iface = default_iface
        self.introspected = False
        self.subnodes = [] # names of direct children in the object tree
        self._interfaces = {} # dict of interface name => ProxyInterface
        self._shortcuts = {} # dict of method name => ProxyInterface
    #end __init__

    def interfaces(self) :
        "returns the names of the interfaces of the remote object."
        if not self.introspected :
            self.introspect()
        #end if
        return \
            list(self._interfaces.keys())
    #end interfaces

    def __getitem__(self, name) :
        "returns the ProxyInterface for the named interface."
        if not self.introspected :
            self.introspect()
        #end if
        return \
            self._interfaces[name]
    #end __getitem__

    def __setitem__(self, name, iface) :
        self._interfaces[name] = iface
    #end __setitem__

    def has_iface(self, name) :
        if not self.introspected :
            self.introspect()
        #end if
        return \
            name in self._interfaces
    #end has_iface

    def introspect(self) :
        "synchronously introspects the remote object, (re)populating the interface" \
        " cache and the shortcut methods. Returns the introspection XML."
        _logger.debug("introspecting %s at %s", self.destination, self.path)
        xml = self.bus.introspect_data(self.destination, self.path)
        ProxyObjectFactory.introspect_into(self, xml)
        self.define_shortcut_methods()
        return \
            xml
    #end introspect

    def define_shortcut_methods(self) :
        "works out which method names are defined by exactly one of the cached" \
        " interfaces, and makes them callable directly on this object. Names of" \
        " attributes of the ProxyObject class itself are never used. Replaces" \
        " the results of any previous call."
        builtin = set(dir(type(self))) | set(vars(self))
        ambiguous = set()
        univocal = {}
        for iface in self._interfaces.values() :
            for name in iface._interface.methods :
                if name in ambiguous or name in builtin :
                    pass
                elif name in univocal :
                    del univocal[name]
                    ambiguous.add(name)
                else :
                    univocal[name] = iface
                #end if
            #end for
        #end for
        self._shortcuts = univocal
        _logger.debug \
          (
            "shortcuts for %s: %s; ambiguous: %s", self.path, sorted(univocal), sorted(ambiguous)
          )
    #end define_shortcut_methods

    def on_signal(self, name, handler = None) :
        "registers a handler for the named signal on the default interface," \
        " which must be set."
        if self.default_iface == None or not self.has_iface(self.default_iface) :
            raise NoSuchMethodError \
              (
                    "no default interface “%s” on object “%s” for signal “%s”"
                %
                    (self.default_iface, self.path, name)
              )
        #end if
        ProxyInterface.on_signal(self._interfaces[self.default_iface], name, handler)
    #end on_signal

    def _no_such_method(self, name) :
        return \
            NoSuchMethodError \
              (
                    "undefined method “%s” for D-Bus interface “%s” on object “%s”"
                %
                    (name, self.default_iface, self.path)
              )
    #end _no_such_method

    def _resolve(self, name) :
        # finds the callable for a method name that is not a ProxyObject attribute:
        # a shortcut if there is one, else the method on the default interface.
        if not self.introspected :
            self.introspect()
        #end if
        iface = self._shortcuts.get(name)
        if iface == None :
            if self.default_iface == None or not self.has_iface(self.default_iface) :
                raise self._no_such_method(name)
            #end if
            iface = self._interfaces[self.default_iface]
            if name not in iface._interface.methods :
                raise self._no_such_method(name)
            #end if
        #end if

        def forward(*args, reply_handler = None) :
            return \
                ProxyInterface.call(iface, name, *args, reply_handler = reply_handler)
        #end forward

    #begin _resolve
        forward.__name__ = name
        return \
            forward
    #end _resolve

    def __getattr__(self, name) :
        if name.startswith("_") :
            raise AttributeError("%s object has no attribute “%s”" % (type(self).__name__, name))
        #end if
        return \
            self._resolve(name)
    #end __getattr__

    def call(self, name, *args, reply_handler = None) :
        "explicitly calls the named method, resolved as a shortcut or on the" \
        " default interface, even if the name is also a ProxyObject attribute."
        return \
            self._resolve(name)(*args, reply_handler = reply_handler)
    #end call

    def __repr__(self) :
        return \
            "<ProxyObject %s at %s>" % (self.destination, self.path)
    #end __repr__

#end ProxyObject

class ProxyObjectFactory :
    "builds introspected ProxyObjects from introspection data."

    __slots__ = ("xml", "bus", "destination", "path", "api")

    def __init__(self, xml, bus, destination, path, *, api = ApiOptions.CURRENT) :
        self.xml = xml
        self.bus = bus
        self.destination = destination
        self.path = path
        self.api = api
    #end __init__

    @staticmethod
    def introspect_into(proxy, xml) :
        "fills in the interfaces and subnodes of proxy from xml, which can be an XML" \
        " string or an already-parsed Introspection, and marks it as introspected."
        if isinstance(xml, Introspection) :
            introspection = xml
        else :
            introspection = Introspection.parse(xml)
        #end if
        for iface in introspection.interfaces :
            proxy[iface.name] = def_proxy_interface(iface)(proxy)
        #end for
        proxy.subnodes = list(introspection.nodes)
        proxy.introspected = True
    #end introspect_into

    def build(self) :
        proxy = ProxyObject(self.bus, self.destination, self.path, api = self.api)
        type(self).introspect_into(proxy, self.xml)
        proxy.define_shortcut_methods()
        return \
            proxy
    #end build

#end ProxyObjectFactory

#+
# In-process bus connection
#-

class LocalBus :
    "a bus connection whose peers all live in the current process. Services" \
    " requested on it receive the method calls sent to their names, and signals" \
    " they emit are delivered to matching handlers. Messages are queued by send()" \
    " and delivered by process_queue(); the blocking and callback-based calls" \
    " process the queue themselves. Not thread-safe: callers must serialize access."

    def __init__(self, unique_name = ":1.0") :
        dbroute.validate_bus_name(unique_name)
        self.unique_name = unique_name
        self.message_queue = collections.deque() # outgoing messages awaiting delivery
        self._services = {} # dict of bus name => Service
        self._serials = itertools.count(1)
        self._pending = {} # dict of serial => reply callback
        self._matches = {} # dict of rule string => (rule dict, handler)
    #end __init__

    def request_service(self, name) :
        "claims the given bus name, returning a Service for exporting objects under it."
        if name in self._services :
            raise DBusError(DBUS.ERROR_FAILED, "name “%s” is already owned" % name)
        #end if
        service = Service(name, self)
        self._services[name] = service
        return \
            service
    #end request_service

    def service(self, name) :
        return \
            self._services[name]
    #end service

    def send(self, message) :
        "queues message for delivery, assigning its serial number and sender if" \
        " not already set. Returns the serial number."
        if message.serial == None :
            message.serial = next(self._serials)
        #end if
        if message.sender == None :
            message.sender = self.unique_name
        #end if
        self.message_queue.append(message)
        return \
            message.serial
    #end send

    def _rule_matches(self, rule, message) :
        result = True
        for key, value in rule.items() :
            if value == None :
                continue
            #end if
            if key == "type" :
                actual = message.type_name
            elif key in ("sender", "path", "interface", "member", "destination") :
                actual = getattr(message, key)
            else :
                raise ValueError("unsupported match rule key “%s”" % key)
            #end if
            if actual != value :
                result = False
                break
            #end if
        #end for
        return \
            result
    #end _rule_matches

    def _deliver(self, message) :
        if message.type == DBUS.MESSAGE_TYPE_METHOD_CALL :
            service = self._services.get(message.destination)
            if service == None :
                self.send \
                  (
                    message.new_error
                      (
                        DBUS.ERROR_SERVICE_UNKNOWN,
                        "The name %s was not provided by any .service files" % message.destination
                      )
                  )
            else :
                service.dispatch(message)
            #end if
        elif message.type in (DBUS.MESSAGE_TYPE_METHOD_RETURN, DBUS.MESSAGE_TYPE_ERROR) :
            callback = self._pending.pop(message.reply_serial, None)
            if callback != None :
                callback(message)
            else :
                _logger.debug("dropping unexpected reply %s", message)
            #end if
        elif message.type == DBUS.MESSAGE_TYPE_SIGNAL :
            for rule, handler in list(self._matches.values()) :
                if self._rule_matches(rule, message) :
                    handler(message)
                #end if
            #end for
        #end if
    #end _deliver

    def process_queue(self) :
        "delivers all queued messages, including any queued during delivery."
        while len(self.message_queue) != 0 :
            self._deliver(self.message_queue.popleft())
        #end while
    #end process_queue

    def send_with_reply(self, message, callback) :
        "sends a method call, arranging for callback to be called with the reply message."
        serial = self.send(message)
        self._pending[serial] = callback
        self.process_queue()
    #end send_with_reply

    def send_with_reply_and_block(self, message) :
        "sends a method call and returns the reply message."
        replies = []
        self.send_with_reply(message, replies.append)
        if len(replies) == 0 :
            self._pending.pop(message.serial, None)
            raise DBusError(DBUS.ERROR_NO_REPLY, "no reply to %s" % message)
        #end if
        return \
            replies[0]
    #end send_with_reply_and_block

    def emit(self, service, obj, interface, signal, *args) :
        "sends a signal from obj, exported by service."
        message = Message.new_signal(obj.path, interface.name, signal.name)
        message.sender = service.name
        message.append_objects(signal.signature, *args)
        self.send(message)
        self.process_queue()
    #end emit

    def add_match(self, rule, handler) :
        "calls handler with each signal message matching rule, which is a dict" \
        " of match-rule keys and values. Replaces any handler for an identical rule."
        self._matches[dbroute.format_rule(rule)] = (dict(rule), handler)
    #end add_match

    def remove_match(self, rule) :
        self._matches.pop(dbroute.format_rule(rule), None)
    #end remove_match

    def introspect_data(self, destination, path) :
        "returns the introspection XML for the given object."
        message = Message.new_method_call \
          (
            destination = destination,
            path = path,
            iface = DBUS.INTERFACE_INTROSPECTABLE,
            method = "Introspect"
          )
        return \
            self.send_with_reply_and_block(message).expect_return_objects()[0]
    #end introspect_data

    def get_proxy_object(self, destination, path, *, api = ApiOptions.CURRENT, default_iface = None) :
        "returns a not-yet-introspected ProxyObject for the given object."
        return \
            ProxyObject(self, destination, path, api = api, default_iface = default_iface)
    #end get_proxy_object

    def introspect(self, destination, path, *, api = ApiOptions.CURRENT) :
        "introspects the given object, returning a ready-to-use ProxyObject."
        return \
            ProxyObjectFactory(self.introspect_data(destination, path), self, destination, path, api = api) \
            .build()
    #end introspect

#end LocalBus
