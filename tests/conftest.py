#+
# Common fixtures for the DBRoute tests: an in-process bus with a
# service exporting a few sample objects.
#-

import pytest
import dbroute
import relay
from relay import \
    dbus_interface, \
    dbus_method, \
    dbus_signal

SERVICE_NAME = "org.example.Test"

class Greeter(relay.Object) :

    with dbus_interface("org.example.Greeter") :

        @dbus_method("Hello", in_signature = "s", out_signature = "s")
        def hello(self, name) :
            return \
                "Hello, %s!" % name
        #end hello

        @dbus_method("Foo", out_signature = "s")
        def greeter_foo(self) :
            return \
                "greeter"
        #end greeter_foo

        Greeted = dbus_signal("Greeted", in_signature = "s")

    #end with

    with dbus_interface("org.example.Other") :

        @dbus_method("Foo", out_signature = "s")
        def other_foo(self) :
            return \
                "other"
        #end other_foo

        @dbus_method("Bar", prototype = "in a:i, in b:i, out sum:i")
        def bar(self, a, b) :
            return \
                a + b
        #end bar

        @dbus_method("Pair", out_signature = "si")
        def pair(self) :
            return \
                ("two", 2)
        #end pair

        @dbus_method("Nothing")
        def nothing(self) :
            pass
        #end nothing

        @dbus_method("Fail")
        def fail(self) :
            raise ValueError("something broke")
        #end fail

        @dbus_method("Refuse")
        def refuse(self) :
            raise dbroute.DBusError("org.example.Error.Refused", "not today")
        #end refuse

        @dbus_method("introspect", out_signature = "s")
        def remote_introspect(self) :
            return \
                "remote"
        #end remote_introspect

    #end with

#end Greeter

class Settings(relay.Object) :

    def __init__(self, path) :
        super().__init__(path)
        self.values = {"Volume" : 11}
    #end __init__

    with dbus_interface(dbroute.DBUS.INTERFACE_PROPERTIES) :

        @dbus_method("Get", in_signature = "ss", out_signature = "v")
        def get(self, interface, propname) :
            return \
                self.values[propname]
        #end get

        @dbus_method("Set", in_signature = "ssv")
        def set(self, interface, propname, value) :
            self.values[propname] = value
        #end set

        @dbus_method("GetAll", in_signature = "s", out_signature = "a{sv}")
        def get_all(self, interface) :
            # a lone dict result is a single value, not a sequence
            return \
                dict(self.values)
        #end get_all

    #end with

    with dbus_interface("org.example.Settings") :

        @dbus_method("Reset")
        def reset(self) :
            self.values = {}
        #end reset

    #end with

#end Settings

@pytest.fixture
def bus() :
    return \
        relay.LocalBus()
#end bus

@pytest.fixture
def service(bus) :
    result = bus.request_service(SERVICE_NAME)
    result.export(Greeter("/org/example/greeter"))
    result.export(Settings("/org/example/settings"))
    return \
        result
#end service

@pytest.fixture
def greeter(service) :
    return \
        service.get_node("/org/example/greeter").object
#end greeter

def method_call(path, interface, member, *args, signature = None) :
    "builds a method-call message addressed to the test service."
    message = dbroute.Message.new_method_call \
      (
        destination = SERVICE_NAME,
        path = path,
        iface = interface,
        method = member
      )
    if signature != None :
        message.append_objects(signature, *args)
    else :
        message.args = list(args)
    #end if
    message.serial = 1
    return \
        message
#end method_call
